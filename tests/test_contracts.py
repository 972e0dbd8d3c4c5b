"""Tests for the wire contract: tolerant enums and the response envelope."""

import pytest
from pydantic import BaseModel

from contracts.schemas.enums import (
    TOLERANT_ENUMS,
    AppointmentStatus,
    BiomarkerStatus,
    FastingRequirement,
    HealthCategory,
    NotificationPriority,
    PriceRange,
    ProcessingStatus,
    RiskLevel,
    TestCategory,
    fallback_events,
    reset_fallback_events,
)
from contracts.schemas.envelope import Envelope, ErrorBody, OffsetPagination


@pytest.fixture(autouse=True)
def clean_fallbacks():
    reset_fallback_events()
    yield
    reset_fallback_events()


class TestTolerantEnums:
    """Test cases for decode-tolerant enums."""

    def test_exact_values(self):
        assert BiomarkerStatus("high") is BiomarkerStatus.HIGH
        assert PriceRange("$$$") is PriceRange.PREMIUM

    def test_case_and_separator_insensitive(self):
        assert ProcessingStatus("COMPLETED") is ProcessingStatus.COMPLETED
        assert AppointmentStatus("Checked-In") is AppointmentStatus.CHECKED_IN
        assert HealthCategory("liver function") is HealthCategory.LIVER_FUNCTION

    def test_aliases(self):
        assert TestCategory("cardiovascular") is TestCategory.CARDIOLOGY
        assert FastingRequirement("twelve_hours") is FastingRequirement.HOURS_12
        assert RiskLevel("medium") is RiskLevel.MODERATE

    def test_unknown_value_uses_fallback(self):
        assert BiomarkerStatus("sky-high") is BiomarkerStatus.UNKNOWN
        assert ProcessingStatus("teleporting") is ProcessingStatus.PENDING
        assert NotificationPriority("whenever") is NotificationPriority.NORMAL
        assert PriceRange("$$$$") is PriceRange.MODERATE

    def test_fallback_is_counted(self):
        BiomarkerStatus("sky-high")
        BiomarkerStatus("sky-high")
        events = fallback_events()
        assert events["BiomarkerStatus:sky-high"] == 2

    def test_known_values_are_not_counted(self):
        TestCategory("cardiovascular")
        assert fallback_events() == {}

    def test_every_enum_has_a_fallback(self):
        for enum_cls in TOLERANT_ENUMS:
            assert enum_cls("definitely-not-a-member") is enum_cls.fallback()

    def test_unknown_value_inside_model(self):
        class Reading(BaseModel):
            status: BiomarkerStatus

        reading = Reading.model_validate({"status": "off_the_charts"})
        assert reading.status is BiomarkerStatus.UNKNOWN

    def test_processing_status_flags(self):
        assert ProcessingStatus.EXTRACTING.is_active
        assert not ProcessingStatus.PAUSED.is_active
        assert ProcessingStatus.FAILED.is_terminal
        assert not ProcessingStatus.RETRYING.is_terminal


class TestEnvelope:
    """Test cases for the response envelope."""

    def test_success_omits_unset_keys(self):
        body = Envelope(success=True, data={"a": 1}).to_wire()
        assert body["success"] is True
        assert body["data"] == {"a": 1}
        assert "timestamp" in body
        assert "error" not in body
        assert "pagination" not in body
        assert "message" not in body

    def test_failure_keeps_null_data(self):
        error = ErrorBody(code="NOT_FOUND", message="Test x not found", user_message="Not found")
        body = Envelope(success=False, error=error).to_wire()
        assert body["data"] is None
        assert body["error"]["code"] == "NOT_FOUND"
        assert "details" not in body["error"]

    def test_pagination(self):
        pagination = OffsetPagination(offset=20, limit=20, total=45, has_more=True)
        body = Envelope(success=True, data=[], pagination=pagination).to_wire()
        assert body["pagination"] == {"offset": 20, "limit": 20, "total": 45, "has_more": True}

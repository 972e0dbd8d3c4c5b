"""Tests for request validation and pagination helpers."""

from datetime import date

import pytest

from gateway.errors import ValidationError
from gateway.pagination import FilterSet, Page, paginate
from gateway.validation import (
    FieldErrors,
    check_batch_size,
    check_choice,
    check_page,
    check_range,
    parse_bool,
    parse_date,
    parse_float,
    parse_int,
    resolve_mime_type,
    upload_problems,
)

MB = 1024 * 1024


class TestFieldErrors:
    """Test cases for the per-request error collector."""

    def test_every_field_is_reported(self):
        errors = FieldErrors()
        check_page(errors, -1, 500, 20, 50)
        check_choice(errors, "sort_by", "colour", ["price", "name"])

        with pytest.raises(ValidationError) as exc_info:
            errors.raise_if_any()

        fields = [d.field for d in exc_info.value.details]
        assert fields == ["offset", "limit", "sort_by"]
        assert exc_info.value.status_code == 400

    def test_unprocessable(self):
        errors = FieldErrors()
        errors.add("time_slot", "Not an available slot", "25:00")
        with pytest.raises(ValidationError) as exc_info:
            errors.raise_if_any(unprocessable=True)
        assert exc_info.value.status_code == 422
        assert exc_info.value.details[0].value == "25:00"

    def test_nothing_to_raise(self):
        FieldErrors().raise_if_any()


class TestChecks:
    """Test cases for individual checks."""

    def test_page_defaults(self):
        errors = FieldErrors()
        assert check_page(errors, 0, None, 20, 50) == (0, 20)
        assert not errors

    def test_limit_above_max_is_rejected(self):
        errors = FieldErrors()
        check_page(errors, 0, 51, 20, 50)
        assert errors.details[0].field == "limit"

    def test_page_from_query_strings(self):
        errors = FieldErrors()
        assert check_page(errors, "40", "10", 20, 50) == (40, 10)
        assert not errors

    def test_page_with_unparseable_values(self):
        errors = FieldErrors()
        assert check_page(errors, "first", "ten", 20, 50) == (0, 20)
        assert [d.field for d in errors.details] == ["offset", "limit"]

    def test_range_is_never_swapped(self):
        errors = FieldErrors()
        check_range(errors, "price_min", 2000, "price_max", 500)
        assert [d.field for d in errors.details] == ["price_min"]

    def test_negative_bound(self):
        errors = FieldErrors()
        check_range(errors, "price_min", -5, "price_max", None)
        assert errors.details[0].message == "Must not be negative"

    def test_open_range(self):
        errors = FieldErrors()
        check_range(errors, "price_min", None, "price_max", 100)
        assert not errors

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2025-03-01", date(2025, 3, 1)),
            (None, None),
        ],
    )
    def test_parse_date(self, value, expected):
        errors = FieldErrors()
        assert parse_date(errors, "date", value) == expected
        assert not errors

    @pytest.mark.parametrize("value", ["2025-02-30", "01/03/2025", "2025-3-1"])
    def test_parse_bad_date(self, value):
        errors = FieldErrors()
        assert parse_date(errors, "date", value) is None
        assert errors.details[0].field == "date"


class TestUploadChecks:
    """Test cases for upload validation."""

    @pytest.mark.parametrize(
        "file_name,content_type,expected",
        [
            ("report.pdf", "application/pdf", "application/pdf"),
            ("scan.jpg", "image/jpg", "image/jpeg"),
            ("scan.HEIF", "application/octet-stream", "image/heic"),
            ("report.pdf", None, "application/pdf"),
            ("notes.txt", "text/plain", "text/plain"),
        ],
    )
    def test_resolve_mime_type(self, file_name, content_type, expected):
        assert resolve_mime_type(file_name, content_type) == expected

    def test_valid_upload(self):
        assert upload_problems("report.pdf", "application/pdf", 2 * MB, 10 * MB) == []

    def test_every_problem_is_listed(self):
        problems = upload_problems("huge.txt", "text/plain", 11 * MB, 10 * MB)
        messages = [p.message for p in problems]
        assert "File exceeds the 10 MB limit" in messages
        assert any(m.startswith("Unsupported file type") for m in messages)

    def test_empty_file(self):
        problems = upload_problems("empty.pdf", "application/pdf", 0, 10 * MB)
        assert [p.message for p in problems] == ["File is empty"]

    @pytest.mark.parametrize("count", [0, 11])
    def test_batch_size(self, count):
        with pytest.raises(ValidationError):
            check_batch_size(count, 10)

    def test_batch_size_ok(self):
        check_batch_size(10, 10)


class TestPagination:
    """Test cases for pages and faceted filters."""

    def test_has_more(self):
        page = paginate(list(range(45)), 20, 20)
        assert page.items == list(range(20, 40))
        assert page.has_more
        assert not paginate(list(range(45)), 40, 20).has_more

    def test_meta(self):
        meta = Page(items=[1, 2], offset=0, limit=20, total=2).meta()
        assert meta.total == 2
        assert meta.has_more is False

    def test_filters_combine(self):
        items = [
            {"category": "cardiology", "price": 600},
            {"category": "cardiology", "price": 1400},
            {"category": "diabetes", "price": 300},
        ]
        filters = FilterSet()
        filters.add("category", lambda t: t["category"] == "cardiology")
        filters.add("price_max", lambda t: t["price"] <= 1000)
        filters.add("unused", lambda t: False, active=False)

        assert filters.apply(items) == [items[0]]
        assert filters.active == ["category", "price_max"]

    def test_facet_ignores_its_own_filter(self):
        items = [
            {"category": "cardiology", "price": 600},
            {"category": "cardiology", "price": 1400},
            {"category": "diabetes", "price": 300},
        ]
        filters = FilterSet()
        filters.add("category", lambda t: t["category"] == "cardiology")
        filters.add("price_max", lambda t: t["price"] <= 1000)

        counts = filters.facet(items, "category", lambda t: t["category"])
        assert counts == {"cardiology": 1, "diabetes": 1}

    def test_facet_list_values(self):
        items = [{"features": ["parking", "wifi"]}, {"features": ["parking"]}]
        counts = FilterSet().facet(items, "features", lambda f: f["features"])
        assert counts["parking"] == 2
        assert counts["wifi"] == 1


class TestQueryValues:
    """Test cases for parsing raw query strings."""

    def test_int(self):
        errors = FieldErrors()
        assert parse_int(errors, "price_min", " 500 ") == 500
        assert parse_int(errors, "price_min", None) is None
        assert not errors
        assert parse_int(errors, "price_min", "5.5") is None
        assert errors.details[0].value == "5.5"

    def test_float(self):
        errors = FieldErrors()
        assert parse_float(errors, "lat", "12.97") == 12.97
        assert parse_float(errors, "lat", "north") is None
        assert parse_float(errors, "lng", "nan") is None
        assert [d.field for d in errors.details] == ["lat", "lng"]

    @pytest.mark.parametrize(
        "raw, expected",
        [("true", True), ("1", True), ("Yes", True), ("off", False), ("0", False), ("FALSE", False)],
    )
    def test_bool(self, raw, expected):
        errors = FieldErrors()
        assert parse_bool(errors, "featured", raw) is expected
        assert not errors

    def test_bool_rejects_other_words(self):
        errors = FieldErrors()
        assert parse_bool(errors, "featured", "maybe") is None
        assert errors.details[0].field == "featured"

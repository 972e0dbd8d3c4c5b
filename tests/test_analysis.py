"""Tests for health analyses, trends, the dashboard and notifications."""

from datetime import datetime, timezone

import pytest

from contracts.schemas.enums import NotificationCategory, RiskLevel, TrendDirection
from gateway.biomarkers import extract_biomarkers, parse_line
from gateway.services.analysis import (
    NEUTRAL_CONFIDENCE,
    NEUTRAL_SCORE,
    category_scores,
    concerns_and_actions,
    risk_level,
    score_biomarkers,
    trend_between,
)
from gateway.services.dashboard import score_status, time_based_greeting
from tests.conftest import API
from tests.test_lab_reports import pdf_bytes, upload

pytestmark = pytest.mark.anyio


def markers(*lines):
    return [parse_line(line) for line in lines]


async def processed_report(client, user, text):
    response = await upload(client, user["headers"], pdf_bytes(text))
    return response.json()["data"]["lab_report_id"]


class TestScoring:
    """Test cases for scoring and risk."""

    def test_score_sample_report(self, sample_report_text):
        score, confidence = score_biomarkers(extract_biomarkers(sample_report_text))
        assert score == 74
        assert confidence == 0.9

    def test_unknown_status_is_ignored(self):
        biomarkers = markers("HDL: 50 mg/dL (40-60)", "Vitamin D: 18 ng/mL")
        assert score_biomarkers(biomarkers) == (100, 0.95)

    def test_nothing_to_score(self):
        assert score_biomarkers(markers("Vitamin D: 18 ng/mL")) == (NEUTRAL_SCORE, NEUTRAL_CONFIDENCE)

    def test_category_scores(self, sample_report_text):
        scores = category_scores(extract_biomarkers(sample_report_text))
        assert scores == {"cardiovascular": 58, "hematology": 100, "metabolic": 95}

    @pytest.mark.parametrize(
        "score,expected",
        [(92, RiskLevel.LOW), (80, RiskLevel.LOW), (65, RiskLevel.MODERATE), (45, RiskLevel.HIGH), (30, RiskLevel.SEVERE)],
    )
    def test_risk_level(self, score, expected):
        assert risk_level(score, []) is expected

    def test_critical_result_raises_risk(self):
        critical = markers("LDL: 162 mg/dL (0-100)")
        assert risk_level(90, critical) is RiskLevel.HIGH
        assert risk_level(30, critical) is RiskLevel.SEVERE

    @pytest.mark.parametrize(
        "previous,current,expected",
        [
            (None, 70, TrendDirection.UNKNOWN),
            (70, 75, TrendDirection.IMPROVING),
            (70, 74, TrendDirection.STABLE),
            (70, 65, TrendDirection.DECLINING),
        ],
    )
    def test_trend_between(self, previous, current, expected):
        assert trend_between(previous, current) is expected

    def test_concerns_worst_first(self, sample_report_text):
        concerns, actions = concerns_and_actions(extract_biomarkers(sample_report_text))
        assert concerns[0] == "LDL Cholesterol is critical (162 mg/dL)"
        assert len(concerns) == 3
        assert actions[0] == "Consult a doctor promptly about your LDL Cholesterol result"
        assert len(actions) == 2

    def test_no_concerns(self):
        concerns, actions = concerns_and_actions(markers("HDL: 50 mg/dL (40-60)"))
        assert concerns == []
        assert actions == ["Keep up your current routine and repeat your checkup in 6 months"]


class TestAnalysisEndpoints:
    """Test cases for /health-analysis."""

    async def test_latest_without_reports(self, client, user):
        response = await client.get(f"{API}/health-analysis/latest", headers=user["headers"])
        assert response.status_code == 404

    async def test_request_new_analysis(self, client, user, sample_report_text):
        report_id = await processed_report(client, user, sample_report_text)
        first = (await client.get(f"{API}/health-analysis/latest", headers=user["headers"])).json()["data"]

        response = await client.post(
            f"{API}/health-analysis", json={"lab_report_id": report_id}, headers=user["headers"]
        )
        assert response.status_code == 201
        second = response.json()["data"]
        assert second["analysis_id"] != first["analysis_id"]
        assert second["health_trend"] == "stable"

        latest = (await client.get(f"{API}/health-analysis/latest", headers=user["headers"])).json()["data"]
        assert latest["analysis_id"] == second["analysis_id"]

        history = await client.get(f"{API}/health-analysis/history", headers=user["headers"])
        assert history.json()["pagination"]["total"] == 2

        fetched = await client.get(f"{API}/health-analysis/{first['analysis_id']}", headers=user["headers"])
        assert fetched.json()["data"]["overall_health_score"] == 74

    async def test_request_on_failed_report(self, client, user):
        report_id = await processed_report(client, user, "Nothing to see here.")
        response = await client.post(
            f"{API}/health-analysis", json={"lab_report_id": report_id}, headers=user["headers"]
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "PROCESSING_ERROR"

    async def test_other_users_analysis(self, client, user, other_user, sample_report_text):
        await processed_report(client, user, sample_report_text)
        latest = (await client.get(f"{API}/health-analysis/latest", headers=user["headers"])).json()["data"]
        response = await client.get(f"{API}/health-analysis/{latest['analysis_id']}", headers=other_user["headers"])
        assert response.status_code == 403

    async def test_trends(self, client, user, sample_report_text):
        await processed_report(client, user, sample_report_text)
        improved = sample_report_text.replace("LDL Cholesterol: 162", "LDL Cholesterol: 95")
        await processed_report(client, user, improved)

        data = (await client.get(f"{API}/health-analysis/trends", headers=user["headers"])).json()["data"]
        assert [p["score"] for p in data["score_history"]] == [74, 81]
        assert data["overall_trend"] == "improving"

        ldl = next(b for b in data["biomarkers"] if b["name"] == "LDL Cholesterol")
        assert [p["value"] for p in ldl["points"]] == [162, 95]
        assert ldl["direction"] == "improving"
        hdl = next(b for b in data["biomarkers"] if b["name"] == "HDL Cholesterol")
        assert hdl["direction"] == "stable"


class TestDashboard:
    """Test cases for the dashboard overview."""

    def test_greeting(self):
        assert time_based_greeting(datetime(2025, 1, 1, 8, tzinfo=timezone.utc)) == "Good morning"
        assert time_based_greeting(datetime(2025, 1, 1, 14, tzinfo=timezone.utc)) == "Good afternoon"
        assert time_based_greeting(datetime(2025, 1, 1, 22, tzinfo=timezone.utc)) == "Good evening"

    @pytest.mark.parametrize("score,status", [(90, "excellent"), (74, "good"), (55, "fair"), (20, "needs_attention")])
    def test_score_status(self, score, status):
        assert score_status(score) == status

    async def test_without_data(self, client, user):
        response = await client.get(f"{API}/dashboard/overview", headers=user["headers"])
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["health_score"] == {
            "overall": 0,
            "trend": "unknown",
            "status": "no_data",
            "last_calculated": None,
            "category_breakdown": {},
        }
        assert data["greeting"]["time_based_greeting"].endswith(", Priya")
        assert data["stats"] == {"recent_tests": 0, "recommendations": 0, "health_alerts": 0, "upcoming_appointments": 0}
        assert data["alerts"] == []

    async def test_with_report(self, client, user, sample_report_text):
        await processed_report(client, user, sample_report_text)

        data = (await client.get(f"{API}/dashboard/overview", headers=user["headers"])).json()["data"]
        assert data["health_score"]["overall"] == 74
        assert data["health_score"]["status"] == "good"
        assert data["stats"]["recent_tests"] == 1
        assert data["stats"]["recommendations"] == 2
        assert data["stats"]["health_alerts"] == 1
        assert [a["severity"] for a in data["alerts"]] == ["critical"] * 3
        assert data["greeting"]["personalized_message"].startswith("Some of your results need attention")


class TestNotifications:
    """Test cases for the notification inbox."""

    async def test_list_and_read(self, client, user, sample_report_text):
        await processed_report(client, user, sample_report_text)

        response = await client.get(f"{API}/notifications", headers=user["headers"])
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["unread_count"] == 2
        categories = {n["category"] for n in data["notifications"]}
        assert categories == {"lab_report", "alert"}

        alert = next(n for n in data["notifications"] if n["category"] == "alert")
        assert alert["priority"] == "high"

        read = await client.put(f"{API}/notifications/{alert['id']}/read", headers=user["headers"])
        assert read.json()["data"]["is_read"] is True

        unread_only = await client.get(f"{API}/notifications", params={"unread_only": "true"}, headers=user["headers"])
        assert [n["category"] for n in unread_only.json()["data"]["notifications"]] == ["lab_report"]
        assert unread_only.json()["data"]["unread_count"] == 1

        unread = await client.put(f"{API}/notifications/{alert['id']}/unread", headers=user["headers"])
        assert unread.json()["data"]["is_read"] is False

    async def test_read_all(self, client, user, services):
        for index in range(3):
            await services.notifications.create(
                user["user"]["id"], title=f"Tip {index}", message="Drink water", category=NotificationCategory.RECOMMENDATION
            )

        response = await client.put(f"{API}/notifications/read-all", headers=user["headers"])
        assert response.json()["data"]["updated"] == 3
        again = await client.put(f"{API}/notifications/read-all", headers=user["headers"])
        assert again.json()["data"]["updated"] == 0

    async def test_category_filter(self, client, user, services):
        await services.notifications.create(
            user["user"]["id"], title="Tip", message="Walk daily", category=NotificationCategory.RECOMMENDATION
        )
        await services.notifications.create(
            user["user"]["id"], title="Heads up", message="Check results", category=NotificationCategory.ALERT
        )
        response = await client.get(
            f"{API}/notifications", params={"category": "recommendation"}, headers=user["headers"]
        )
        data = response.json()["data"]
        assert [n["title"] for n in data["notifications"]] == ["Tip"]
        assert data["unread_count"] == 2

    async def test_other_users_notification(self, client, user, other_user, services):
        notification = await services.notifications.create(
            user["user"]["id"], title="Tip", message="Sleep well", category=NotificationCategory.RECOMMENDATION
        )
        response = await client.put(f"{API}/notifications/{notification.id}/read", headers=other_user["headers"])
        assert response.status_code == 403

    async def test_page_limit(self, client, user):
        response = await client.get(f"{API}/notifications", params={"limit": 101}, headers=user["headers"])
        assert response.status_code == 400

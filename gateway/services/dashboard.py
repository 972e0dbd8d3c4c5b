"""Dashboard overview assembled from the other services."""

from datetime import datetime, timedelta
from typing import List, Optional

from contracts.schemas.enums import NotificationCategory, RiskLevel, TrendDirection
from contracts.schemas.lab_report import (
    DashboardOverviewData,
    DashboardUser,
    GreetingData,
    HealthAlert,
    HealthAnalysis,
    HealthScoreData,
    QuickStatsData,
)
from gateway.services.analysis import AnalysisService
from gateway.services.appointments import AppointmentService
from gateway.services.base import utcnow
from gateway.services.lab_reports import LabReportService
from gateway.services.notifications import NotificationService
from gateway.services.users import UserService

RECENT_TESTS_DAYS = 30


def time_based_greeting(now: datetime) -> str:
    if 5 <= now.hour < 12:
        return "Good morning"
    if 12 <= now.hour < 17:
        return "Good afternoon"
    return "Good evening"


def score_status(score: int) -> str:
    if score >= 85:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "needs_attention"


def personalized_message(analysis: Optional[HealthAnalysis]) -> str:
    if analysis is None:
        return "Upload your first lab report to see your health score."
    if analysis.health_trend == TrendDirection.IMPROVING:
        return "Your health score is improving. Keep it up!"
    if analysis.health_trend == TrendDirection.DECLINING:
        return "Your health score dipped since your last report. Check your recommendations."
    if analysis.risk_level in (RiskLevel.HIGH, RiskLevel.SEVERE):
        return "Some of your results need attention. Review them with your doctor."
    return "Your latest results are in. Here's your health at a glance."


class DashboardService:
    def __init__(
        self,
        users: UserService,
        analysis: AnalysisService,
        lab_reports: LabReportService,
        appointments: AppointmentService,
        notifications: NotificationService,
    ):
        self.users = users
        self.analysis = analysis
        self.lab_reports = lab_reports
        self.appointments = appointments
        self.notifications = notifications

    def _alerts(self, analysis: Optional[HealthAnalysis]) -> List[HealthAlert]:
        if analysis is None or not analysis.primary_concerns:
            return []
        severe = analysis.risk_level in (RiskLevel.HIGH, RiskLevel.SEVERE)
        alerts = [
            HealthAlert(
                id=f"{analysis.analysis_id}:{index}",
                type="abnormal_result",
                severity="critical" if severe else "warning",
                title="Result outside the reference range",
                message=concern,
                created_at=analysis.analysis_date,
            )
            for index, concern in enumerate(analysis.primary_concerns)
        ]
        if analysis.health_trend == TrendDirection.DECLINING:
            alerts.append(
                HealthAlert(
                    id=f"{analysis.analysis_id}:trend",
                    type="trend_change",
                    severity="warning",
                    title="Health score declining",
                    message=f"Your health score dropped to {analysis.overall_health_score}.",
                    created_at=analysis.analysis_date,
                )
            )
        return alerts

    async def overview(self, user_id: str, now: Optional[datetime] = None) -> DashboardOverviewData:
        now = now or utcnow()
        user = await self.users.get(user_id)
        analysis = await self.analysis.latest_or_none(user_id)

        since = now - timedelta(days=RECENT_TESTS_DAYS)
        documents = await self.lab_reports.documents(user_id)
        unread_alerts = await self.notifications.unread_count(user_id, NotificationCategory.ALERT)

        if analysis is None:
            health_score = HealthScoreData(overall=0, trend=TrendDirection.UNKNOWN, status="no_data")
        else:
            health_score = HealthScoreData(
                overall=analysis.overall_health_score,
                trend=analysis.health_trend,
                status=score_status(analysis.overall_health_score),
                last_calculated=analysis.analysis_date,
                category_breakdown=analysis.category_scores,
            )

        first_name = user.name.split()[0] if user.name.strip() else user.name
        return DashboardOverviewData(
            user=DashboardUser(name=user.name, email=user.email),
            health_score=health_score,
            greeting=GreetingData(
                time_based_greeting=f"{time_based_greeting(now)}, {first_name}",
                personalized_message=personalized_message(analysis),
            ),
            stats=QuickStatsData(
                recent_tests=sum(1 for d in documents if d.upload_date >= since),
                recommendations=len(analysis.immediate_actions) if analysis else 0,
                health_alerts=unread_alerts,
                upcoming_appointments=await self.appointments.upcoming_count(user_id),
            ),
            alerts=self._alerts(analysis),
            last_updated=now,
        )

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from gateway.cache import Cache
from gateway.config import Settings
from gateway.ratelimit import RateLimiter
from gateway.store import DocumentStore

from .analysis import AnalysisService
from .appointments import AppointmentService
from .auth import AuthService, CurrentUser
from .catalog import CatalogService
from .dashboard import DashboardService
from .facilities import FacilityService
from .lab_reports import LabReportService
from .notifications import LoggingDispatcher, NotificationDispatcher, NotificationService
from .users import UserService

if TYPE_CHECKING:
    from gateway.pipeline import AnalysisPipeline


@dataclass
class Services:
    """Everything the routers need, built once per application."""

    settings: Settings
    store: DocumentStore
    cache: Cache
    auth: AuthService
    users: UserService
    catalog: CatalogService
    facilities: FacilityService
    notifications: NotificationService
    appointments: AppointmentService
    lab_reports: LabReportService
    analysis: AnalysisService
    dashboard: DashboardService
    pipeline: "AnalysisPipeline"
    auth_limiter: RateLimiter


def build_services(
    settings: Settings,
    store: DocumentStore,
    cache: Cache,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Services:
    from gateway.pipeline import LocalAnalysisPipeline

    users = UserService(store)
    catalog = CatalogService(store, cache, settings)
    facilities = FacilityService(store, catalog)
    notifications = NotificationService(store, users, dispatcher or LoggingDispatcher())
    appointments = AppointmentService(store, facilities, catalog, notifications)
    lab_reports = LabReportService(store)
    analysis = AnalysisService(store, lab_reports)
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        auth=AuthService(store, settings),
        users=users,
        catalog=catalog,
        facilities=facilities,
        notifications=notifications,
        appointments=appointments,
        lab_reports=lab_reports,
        analysis=analysis,
        dashboard=DashboardService(users, analysis, lab_reports, appointments, notifications),
        pipeline=LocalAnalysisPipeline(
            lab_reports,
            analysis,
            notifications,
            timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
            step_delay=settings.PIPELINE_STEP_DELAY_SECONDS,
        ),
        auth_limiter=RateLimiter(settings.RATE_LIMIT_PER_MINUTE),
    )


__all__ = [
    "AnalysisService",
    "AppointmentService",
    "AuthService",
    "CatalogService",
    "CurrentUser",
    "DashboardService",
    "FacilityService",
    "LabReportService",
    "LoggingDispatcher",
    "NotificationDispatcher",
    "NotificationService",
    "Services",
    "UserService",
    "build_services",
]

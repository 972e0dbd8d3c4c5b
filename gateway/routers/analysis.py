"""Health analysis and dashboard router."""
from typing import Optional

from fastapi import APIRouter

from contracts.schemas.lab_report import AnalysisRequest
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.responses import created, ok
from gateway.validation import FieldErrors, check_page

router = APIRouter(tags=["Health Analysis"])

HISTORY_DEFAULT_LIMIT = 20
HISTORY_MAX_LIMIT = 50


@router.get("/dashboard/overview")
async def dashboard_overview(current: CurrentUserDep, services: ServicesDep):
    """Greeting, health score, quick stats and alerts for the home screen."""
    return ok(await services.dashboard.overview(current.user_id))


@router.get("/health-analysis/latest")
async def latest_analysis(current: CurrentUserDep, services: ServicesDep):
    return ok(await services.analysis.latest(current.user_id))


@router.get("/health-analysis/trends")
async def health_trends(current: CurrentUserDep, services: ServicesDep):
    return ok(await services.analysis.trends(current.user_id))


@router.get("/health-analysis/history")
async def analysis_history(
    current: CurrentUserDep,
    services: ServicesDep,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, HISTORY_DEFAULT_LIMIT, HISTORY_MAX_LIMIT)
    errors.raise_if_any()
    page = await services.analysis.history(current.user_id, offset, limit)
    return ok(page.items, pagination=page.meta())


@router.post("/health-analysis")
async def request_analysis(data: AnalysisRequest, current: CurrentUserDep, services: ServicesDep):
    """Analyze a completed lab report again; the result is a new analysis."""
    analysis = await services.analysis.request_analysis(current.user_id, data.lab_report_id)
    return created(analysis, message="Analysis created")


@router.get("/health-analysis/{analysis_id}")
async def get_analysis(analysis_id: str, current: CurrentUserDep, services: ServicesDep):
    return ok(await services.analysis.get(current.user_id, analysis_id))

"""Notification router."""
from typing import Optional

from fastapi import APIRouter

from contracts.schemas.enums import NotificationCategory
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.responses import ok
from gateway.validation import FieldErrors, check_page, parse_bool

router = APIRouter(prefix="/notifications", tags=["Notifications"])

NOTIFICATIONS_DEFAULT_LIMIT = 20
NOTIFICATIONS_MAX_LIMIT = 100


@router.get("")
async def list_notifications(
    current: CurrentUserDep,
    services: ServicesDep,
    category: Optional[str] = None,
    unread_only: Optional[str] = None,
    offset: Optional[str] = None,
    limit: Optional[str] = None,
):
    """Newest first; ``unread_count`` covers every category."""
    errors = FieldErrors()
    offset, limit = check_page(errors, offset, limit, NOTIFICATIONS_DEFAULT_LIMIT, NOTIFICATIONS_MAX_LIMIT)
    unread_only = parse_bool(errors, "unread_only", unread_only) or False
    errors.raise_if_any()
    data, page = await services.notifications.list(
        current.user_id,
        category=NotificationCategory(category) if category else None,
        unread_only=unread_only,
        offset=offset,
        limit=limit,
    )
    return ok(data, pagination=page.meta())


@router.put("/read-all")
async def mark_all_read(current: CurrentUserDep, services: ServicesDep):
    result = await services.notifications.mark_all_read(current.user_id)
    return ok(result, message=f"{result.updated} notifications marked as read")


@router.put("/{notification_id}/read")
async def mark_read(notification_id: str, current: CurrentUserDep, services: ServicesDep):
    return ok(await services.notifications.set_read(current.user_id, notification_id, True))


@router.put("/{notification_id}/unread")
async def mark_unread(notification_id: str, current: CurrentUserDep, services: ServicesDep):
    return ok(await services.notifications.set_read(current.user_id, notification_id, False))

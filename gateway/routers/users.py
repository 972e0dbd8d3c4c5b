"""Current user router."""
from fastapi import APIRouter

from contracts.schemas.user import UserPreferences, UserUpdateRequest
from gateway.dependencies import CurrentUserDep, ServicesDep
from gateway.responses import ok

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me")
async def get_me(current: CurrentUserDep, services: ServicesDep):
    return ok(await services.users.get(current.user_id))


@router.put("/me")
async def update_me(data: UserUpdateRequest, current: CurrentUserDep, services: ServicesDep):
    """Update name, phone number or profile; omitted fields are unchanged."""
    user = await services.users.update(current.user_id, data)
    return ok(user, message="Profile updated")


@router.put("/me/preferences")
async def update_preferences(data: UserPreferences, current: CurrentUserDep, services: ServicesDep):
    user = await services.users.update_preferences(current.user_id, data)
    return ok(user.preferences, message="Preferences updated")

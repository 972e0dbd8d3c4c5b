from typing import Annotated, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gateway.errors import AuthenticationError, ServiceUnavailableError
from gateway.ratelimit import client_key
from gateway.services import CurrentUser, Services

security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    """Services built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise ServiceUnavailableError("Service is starting up")
    return services


ServicesDep = Annotated[Services, Depends(get_services)]


async def get_current_user(
    services: ServicesDep,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> CurrentUser:
    """Validate the bearer access token and return the current user."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError.token_invalid("Missing bearer token")
    return await services.auth.authenticate(credentials.credentials)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


async def auth_rate_limit(request: Request, services: ServicesDep) -> None:
    """Count the request against the per-client auth rate limit."""
    await services.auth_limiter.hit(f"{request.url.path}:{client_key(request)}")

"""Authentication router."""
import logging

from fastapi import APIRouter, Depends

from contracts.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
)
from contracts.schemas.envelope import MessageData
from gateway.dependencies import CurrentUserDep, ServicesDep, auth_rate_limit
from gateway.responses import created, ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

RESET_REQUESTED = "If an account exists for this email, a reset link has been sent."


@router.post("/register", dependencies=[Depends(auth_rate_limit)])
async def register(data: RegisterRequest, services: ServicesDep):
    """Create an account and sign it in."""
    auth = await services.auth.register(data)
    return created(auth, message="Account created")


@router.post("/login", dependencies=[Depends(auth_rate_limit)])
async def login(data: LoginRequest, services: ServicesDep):
    auth = await services.auth.login(data)
    return ok(auth, message="Signed in")


@router.post("/refresh", dependencies=[Depends(auth_rate_limit)])
async def refresh(data: RefreshRequest, services: ServicesDep):
    """
    Rotate a refresh token.

    The presented token is consumed; presenting it again revokes every token
    of its session.
    """
    tokens = await services.auth.refresh(data.refresh_token)
    return ok(tokens)


@router.post("/logout")
async def logout(data: LogoutRequest, current: CurrentUserDep, services: ServicesDep):
    result = await services.auth.logout(current, data)
    return ok(result, message=result.message)


@router.post("/forgot-password", dependencies=[Depends(auth_rate_limit)])
async def forgot_password(data: ForgotPasswordRequest, services: ServicesDep):
    """Always answers the same way, whether or not the email is registered."""
    token = await services.auth.forgot_password(data.email)
    if token is not None:
        logger.info(f"Password reset issued for {data.email}")
    return ok(MessageData(message=RESET_REQUESTED))


@router.post("/reset-password", dependencies=[Depends(auth_rate_limit)])
async def reset_password(data: ResetPasswordRequest, services: ServicesDep):
    revoked = await services.auth.reset_password(data.token, data.new_password)
    return ok(MessageData(message="Password updated. Please sign in again."), message=f"{revoked} sessions signed out")

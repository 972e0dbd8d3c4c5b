"""Authentication service: registration, login and refresh-token rotation.

Every login opens a *token family*. Refresh tokens are single use: a refresh
consumes the presented token with a compare-and-set on its record and issues
a new pair in the same family. Presenting a token that was already consumed
(or is unknown, or revoked) revokes the whole family, which also invalidates
access tokens issued to it.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError

from contracts.schemas.auth import (
    AuthData,
    AuthTokens,
    LoginRequest,
    LogoutData,
    LogoutRequest,
    RegisterRequest,
)
from contracts.schemas.user import User, UserProfile
from contracts.utils.security import create_token, decode_token, generate_reset_token, hash_password, verify_password
from gateway.config import Settings
from gateway.errors import AuthenticationError, AuthorizationError, ConflictError
from gateway.services.base import mutate, new_id, utcnow
from gateway.store import DocumentStore, DuplicateKeyError

logger = logging.getLogger(__name__)

USERS = "users"
USER_EMAILS = "user_emails"
REFRESH_TOKENS = "refresh_tokens"
TOKEN_FAMILIES = "token_families"
PASSWORD_RESETS = "password_resets"

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class CurrentUser:
    user_id: str
    family_id: str
    claims: Dict[str, Any] = field(default_factory=dict)


class AuthService:
    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings

    # ==================== Sessions ====================

    async def register(self, data: RegisterRequest) -> AuthData:
        user_id = new_id()
        try:
            await self.store.insert(USER_EMAILS, data.email, {"user_id": user_id})
        except DuplicateKeyError:
            raise ConflictError.duplicate_email()

        now = utcnow()
        user = User(
            id=user_id,
            email=data.email,
            name=data.name,
            phone_number=data.phone_number,
            profile=UserProfile(date_of_birth=data.date_of_birth),
            created_at=now,
            updated_at=now,
        )
        doc = user.model_dump(mode="json")
        doc["hashed_password"] = hash_password(data.password)
        try:
            await self.store.insert(USERS, user_id, doc)
        except Exception:
            await self._release_email(data.email, user_id)
            raise
        logger.info(f"Registered user {user_id}")

        tokens = await self._open_family(user_id, data.device_id)
        return AuthData(user=user, tokens=tokens)

    async def _release_email(self, email: str, user_id: str) -> None:
        """Drop an email claim whose user record was never written."""
        record = await self.store.get(USER_EMAILS, email)
        if record is not None and record.data["user_id"] == user_id:
            await self.store.delete(USER_EMAILS, email, expected_version=record.version)
            logger.warning(f"Released email claim for unregistered user {user_id}")

    async def login(self, data: LoginRequest) -> AuthData:
        email_record = await self.store.get(USER_EMAILS, data.email)
        user_record = None
        if email_record is not None:
            user_record = await self.store.get(USERS, email_record.data["user_id"])
        if user_record is None or not verify_password(data.password, user_record.data["hashed_password"]):
            raise AuthenticationError.invalid_credentials()

        tokens = await self._open_family(user_record.id, data.device_id)
        return AuthData(user=User.model_validate(user_record.data), tokens=tokens)

    async def refresh(self, refresh_token: str) -> AuthTokens:
        claims = self._decode(refresh_token, REFRESH, reused_error=True)
        token_id = claims.get("jti")
        family_id = claims.get("fam")

        record = await self.store.get(REFRESH_TOKENS, token_id) if token_id else None
        if record is None or record.data["status"] != "active":
            await self._reuse_detected(family_id, token_id)
        if not await self._family_active(family_id):
            raise AuthenticationError.refresh_token_invalid_or_reused()

        consumed = dict(record.data, status="consumed", consumed_at=utcnow().isoformat())
        if await self.store.update(REFRESH_TOKENS, token_id, consumed, record.version) is None:
            # Lost the compare-and-set: another request already used this token.
            await self._reuse_detected(family_id, token_id)

        return await self._issue(record.data["user_id"], family_id)

    async def logout(self, current: CurrentUser, data: LogoutRequest) -> LogoutData:
        if data.all_devices:
            revoked = await self.revoke_all(current.user_id, reason="logout_all")
            return LogoutData(message="Signed out of all devices", sessions_revoked=revoked)

        family_id = current.family_id
        if data.refresh_token:
            claims = self._decode(data.refresh_token, REFRESH, verify_exp=False)
            if claims.get("sub") != current.user_id:
                raise AuthorizationError("Refresh token belongs to another user")
            family_id = claims.get("fam", family_id)

        revoked = await self.revoke_family(family_id, reason="logout")
        return LogoutData(message="Signed out", sessions_revoked=1 if revoked else 0)

    async def authenticate(self, access_token: str) -> CurrentUser:
        """Validate an access token: signature, expiry, type and family."""
        claims = self._decode(access_token, ACCESS)
        family_id = claims.get("fam")
        if not await self._family_active(family_id):
            raise AuthenticationError.token_invalid("Session has been revoked")
        return CurrentUser(user_id=claims["sub"], family_id=family_id, claims=claims)

    async def revoke_family(self, family_id: Optional[str], reason: str) -> bool:
        if not family_id:
            return False
        record = await self.store.get(TOKEN_FAMILIES, family_id)
        if record is None or record.data.get("revoked"):
            return False

        def revoke(data):
            if data.get("revoked"):
                return None
            data.update(revoked=True, revoked_at=utcnow().isoformat(), revoked_reason=reason)
            return data

        await mutate(self.store, TOKEN_FAMILIES, family_id, revoke, "Token family")
        logger.info(f"Revoked token family {family_id} ({reason})")
        return True

    async def revoke_all(self, user_id: str, reason: str) -> int:
        families = await self.store.find(TOKEN_FAMILIES, user_id=user_id, revoked=False)
        count = 0
        for family in families:
            if await self.revoke_family(family.id, reason):
                count += 1
        return count

    # ==================== Password reset ====================

    async def forgot_password(self, email: str) -> Optional[str]:
        """Create a reset token if ``email`` is registered.

        The caller always answers with the same generic message; the raw
        token is returned only so it can be handed to the delivery channel.
        """
        email_record = await self.store.get(USER_EMAILS, email)
        if email_record is None:
            logger.info("Password reset requested for an unknown email")
            return None

        reset_id = new_id()
        secret = generate_reset_token()
        expires_at = utcnow() + timedelta(minutes=self.settings.RESET_TOKEN_EXPIRE_MINUTES)
        await self.store.insert(
            PASSWORD_RESETS,
            reset_id,
            {
                "user_id": email_record.data["user_id"],
                "token_hash": hash_password(secret),
                "expires_at": expires_at.isoformat(),
                "used": False,
            },
        )
        return f"{reset_id}.{secret}"

    async def reset_password(self, token: str, new_password: str) -> int:
        """Consume a reset token, set the password and revoke every session."""
        reset_id, _, secret = token.partition(".")
        invalid = AuthenticationError.token_invalid("Reset token is invalid or has expired")
        record = await self.store.get(PASSWORD_RESETS, reset_id) if reset_id and secret else None
        if record is None or record.data["used"]:
            raise invalid
        if record.data["expires_at"] <= utcnow().isoformat():
            raise invalid
        if not verify_password(secret, record.data["token_hash"]):
            raise invalid

        used = dict(record.data, used=True)
        if await self.store.update(PASSWORD_RESETS, reset_id, used, record.version) is None:
            raise invalid

        user_id = record.data["user_id"]
        hashed = hash_password(new_password)

        def rotate(data):
            data.update(hashed_password=hashed, updated_at=utcnow().isoformat())
            return data

        await mutate(self.store, USERS, user_id, rotate, "User")
        revoked = await self.revoke_all(user_id, reason="password_reset")
        logger.info(f"Password reset for user {user_id}, {revoked} sessions revoked")
        return revoked

    # ==================== Internals ====================

    async def _open_family(self, user_id: str, device_id: Optional[str]) -> AuthTokens:
        family_id = new_id()
        await self.store.insert(
            TOKEN_FAMILIES,
            family_id,
            {
                "user_id": user_id,
                "device_id": device_id,
                "revoked": False,
                "created_at": utcnow().isoformat(),
            },
        )
        return await self._issue(user_id, family_id)

    async def _issue(self, user_id: str, family_id: str) -> AuthTokens:
        now = utcnow()
        access_ttl = timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        refresh_ttl = timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS)
        secret, algorithm = self.settings.JWT_SECRET, self.settings.JWT_ALGORITHM

        access_token = create_token(
            {"sub": user_id, "type": ACCESS, "fam": family_id}, secret, algorithm, access_ttl, now=now
        )
        token_id = new_id()
        refresh_token = create_token(
            {"sub": user_id, "type": REFRESH, "fam": family_id, "jti": token_id},
            secret,
            algorithm,
            refresh_ttl,
            now=now,
        )
        await self.store.insert(
            REFRESH_TOKENS,
            token_id,
            {
                "user_id": user_id,
                "family_id": family_id,
                "status": "active",
                "issued_at": now.isoformat(),
                "expires_at": (now + refresh_ttl).isoformat(),
            },
        )
        return AuthTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(access_ttl.total_seconds()),
            expires_at=now + access_ttl,
        )

    def _decode(
        self, token: str, expected_type: str, *, reused_error: bool = False, verify_exp: bool = True
    ) -> Dict[str, Any]:
        invalid = (
            AuthenticationError.refresh_token_invalid_or_reused()
            if reused_error
            else AuthenticationError.token_invalid()
        )
        try:
            claims = decode_token(
                token, self.settings.JWT_SECRET, self.settings.JWT_ALGORITHM, verify_exp=verify_exp
            )
        except ExpiredSignatureError:
            if reused_error:
                raise invalid
            raise AuthenticationError.token_expired()
        except JWTError:
            raise invalid
        if claims.get("type") != expected_type or not claims.get("sub"):
            raise invalid
        return claims

    async def _family_active(self, family_id: Optional[str]) -> bool:
        if not family_id:
            return False
        record = await self.store.get(TOKEN_FAMILIES, family_id)
        return record is not None and not record.data.get("revoked")

    async def _reuse_detected(self, family_id: Optional[str], token_id: Optional[str]):
        logger.warning(f"Refresh token reuse detected (token={token_id}, family={family_id})")
        await self.revoke_family(family_id, reason="refresh_token_reuse")
        raise AuthenticationError.refresh_token_invalid_or_reused()

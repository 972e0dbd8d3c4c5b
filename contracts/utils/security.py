"""Security utilities."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from jose import jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_token(
    data: Dict[str, Any],
    secret: str,
    algorithm: str,
    expires_delta: timedelta,
    now: Optional[datetime] = None,
) -> str:
    """Create a signed JWT carrying ``data`` plus ``iat``, ``exp`` and ``jti``."""
    issued_at = now or datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.setdefault("jti", uuid4().hex)
    to_encode.update({"iat": issued_at, "exp": issued_at + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str, verify_exp: bool = True) -> Dict[str, Any]:
    """Decode and verify a JWT.

    Raises ``jose.ExpiredSignatureError`` for expired tokens and
    ``jose.JWTError`` for anything else that fails verification. Expiry is
    skipped when ``verify_exp`` is false (used to identify a session on logout).
    """
    return jwt.decode(token, secret, algorithms=[algorithm], options={"verify_exp": verify_exp})


def generate_reset_token() -> str:
    """Generate a secure password reset token."""
    return secrets.token_urlsafe(32)

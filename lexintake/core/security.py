"""
Security utilities: session token decoding and password hashing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from joserfc import jwt as jose_jwt
from joserfc.errors import JoseError
from joserfc.jwk import OctKey
from pwdlib import PasswordHash
from pwdlib.hashers.bcrypt import BcryptHasher

from lexintake.core.config import settings

logger = structlog.get_logger()

pwd_context = PasswordHash((BcryptHasher(),))

_jwt_key = OctKey.import_key(settings.JWT_SECRET_KEY)


class InvalidSessionToken(Exception):
    """The bearer token is missing claims or fails verification"""


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as issued by the upstream login flow"""
    institution_id: int
    legacy_user_id: str
    email: Optional[str] = None


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logger.warning("Password verification failed", error=str(e))
        return False


def create_session_token(
    institution_id: int,
    legacy_user_id: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a session token in the shape the upstream login flow produces"""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=12))
    claims: dict[str, Any] = {
        "institutionId": institution_id,
        "legacyUserId": legacy_user_id,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    if email:
        claims["email"] = email
    return jose_jwt.encode({"alg": settings.JWT_ALGORITHM}, claims, _jwt_key)


def resolve_legacy_identifier(claims: dict[str, Any]) -> Optional[str]:
    """Pick the legacy identifier out of whatever claim the issuer used"""
    for claim in ("legacyUserId", "sub", "userId", "email"):
        value = claims.get(claim)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def decode_session_token(token: str) -> Principal:
    try:
        decoded = jose_jwt.decode(token, _jwt_key, algorithms=[settings.JWT_ALGORITHM])
        jose_jwt.JWTClaimsRegistry(exp={"essential": True}).validate(decoded.claims)
    except (JoseError, ValueError) as e:
        logger.warning("Session token rejected", error=str(e))
        raise InvalidSessionToken("invalid session token") from e

    claims = decoded.claims
    try:
        institution_id = int(claims.get("institutionId"))
    except (TypeError, ValueError):
        raise InvalidSessionToken("session token has no institution")

    legacy_user_id = resolve_legacy_identifier(claims)
    if not legacy_user_id:
        raise InvalidSessionToken("session token has no user identifier")

    email = claims.get("email") if isinstance(claims.get("email"), str) else None
    return Principal(institution_id=institution_id, legacy_user_id=legacy_user_id, email=email)

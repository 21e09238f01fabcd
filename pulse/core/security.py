from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt
from passlib.context import CryptContext

from pulse.core.errors import APIError
from pulse.core.settings import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"


def _invalid_token(message: str) -> APIError:
    return APIError(status_code=401, code="invalid_token", message=message)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(*, subject: str, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    issued_at = datetime.now(UTC)
    expires_at = issued_at + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    logger.debug("Issuing access token subject=%s expires_at=%s", subject, expires_at.isoformat())
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, object]:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("Access token rejected")
        raise _invalid_token("Invalid or expired access token") from exc

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        logger.warning("Token with unexpected type=%s", claims.get("type"))
        raise _invalid_token("Invalid token type")
    return claims


def user_id_from_token(token: str) -> str:
    """Resolve the identity carried by an access token, without touching storage."""
    subject = decode_access_token(token).get("sub")
    if not isinstance(subject, str) or not subject:
        raise _invalid_token("Token payload is invalid")
    return subject

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pulse.core.errors import APIError
from pulse.core.security import create_access_token, hash_password, verify_password
from pulse.core.settings import get_settings
from pulse.models import User
from pulse.schemas.auth import AccessToken, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)


def _username_taken() -> APIError:
    return APIError(status_code=409, code="username_taken", message="Username is already in use")


def issue_access_token(user: User) -> AccessToken:
    settings = get_settings()
    return AccessToken(
        access_token=create_access_token(subject=user.id),
        token_type="bearer",
        expires_in=settings.access_token_expire_minutes * 60,
    )


def register_user(db: Session, payload: RegisterRequest) -> tuple[User, AccessToken]:
    if db.scalar(select(User).where(User.username == payload.username)) is not None:
        raise _username_taken()

    user = User(
        username=payload.username,
        display_name=payload.display_name or payload.username,
        avatar=payload.avatar,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise _username_taken() from exc

    logger.info("User registered user_id=%s username=%s", user.id, user.username)
    return user, issue_access_token(user)


def authenticate_user(db: Session, payload: LoginRequest) -> tuple[User, AccessToken]:
    user = db.scalar(select(User).where(User.username == payload.username))
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("Failed login username=%s", payload.username)
        raise APIError(status_code=401, code="invalid_credentials", message="Invalid username or password")
    return user, issue_access_token(user)

from __future__ import annotations

import logging

from fastapi import Depends, Query
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from pulse.core.errors import APIError
from pulse.core.security import user_id_from_token
from pulse.core.settings import get_settings
from pulse.db.session import get_db
from pulse.models import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/v1/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    user_id = user_id_from_token(token)
    user = db.get(User, user_id)
    if user is None:
        logger.warning("Token user_id=%s not found", user_id)
        raise APIError(status_code=401, code="invalid_token", message="Token user was not found")
    return user


class PageParams:
    def __init__(self, *, limit: int, page: int) -> None:
        self.limit = limit
        self.page = page


def page_params(default_limit: str):
    """Build a ``limit``/``page`` dependency whose default comes from the named setting."""

    def dependency(
        limit: int | None = Query(default=None, ge=1),
        page: int = Query(default=1, ge=1),
    ) -> PageParams:
        settings = get_settings()
        resolved = limit if limit is not None else getattr(settings, default_limit)
        return PageParams(limit=min(resolved, settings.page_limit_max), page=page)

    return dependency

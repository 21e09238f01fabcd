from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pulse.models import Conversation, User
from pulse.schemas.users import UserPublic

logger = logging.getLogger(__name__)


def collect_user_ids_from_conversations(conversations: Iterable[Conversation]) -> set[str]:
    user_ids: set[str] = set()
    for conversation in conversations:
        user_ids.update(conversation.participant_ids)
    return user_ids


def collect_user_ids(rows: Iterable[object], *attributes: str) -> set[str]:
    """Gather the user ids held under ``attributes`` on each row, skipping blanks."""
    user_ids: set[str] = set()
    for row in rows:
        for attribute in attributes:
            value = getattr(row, attribute, None)
            if isinstance(value, str) and value:
                user_ids.add(value)
    return user_ids


def fetch_users_by_ids(db: Session, user_ids: Iterable[str]) -> list[User]:
    deduped_ids = list(dict.fromkeys(user_id.strip() for user_id in user_ids if user_id and user_id.strip()))
    if not deduped_ids:
        return []

    rows = db.scalars(select(User).where(User.id.in_(deduped_ids)).order_by(User.username.asc(), User.id.asc())).all()
    logger.debug("Fetched user profiles requested=%s returned=%s", len(deduped_ids), len(rows))
    return list(rows)


def serialize_user_public(user: User) -> UserPublic:
    return UserPublic.model_validate(user)


def profiles_by_id(db: Session, user_ids: Iterable[str]) -> dict[str, UserPublic]:
    return {user.id: serialize_user_public(user) for user in fetch_users_by_ids(db, user_ids)}

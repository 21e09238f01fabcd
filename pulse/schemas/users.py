from __future__ import annotations

from pulse.schemas.base import CamelModel, UtcDatetime


class UserPublic(CamelModel):
    id: str
    username: str
    display_name: str
    avatar: str | None = None
    created_at: UtcDatetime


class UserSearchResult(CamelModel):
    users: list[UserPublic]

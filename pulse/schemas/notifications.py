from __future__ import annotations

from typing import Literal

from pulse.schemas.base import CamelModel, Pagination, UtcDatetime
from pulse.schemas.users import UserPublic

NotificationType = Literal["like", "comment", "follow", "story_view", "mention"]


class NotificationRead(CamelModel):
    id: str
    recipient_id: str
    sender_id: str
    type: NotificationType
    message: str
    related_post_id: str | None = None
    related_comment_id: str | None = None
    related_story_id: str | None = None
    read: bool
    read_at: UtcDatetime | None = None
    created_at: UtcDatetime
    sender: UserPublic | None = None


class NotificationListResponse(CamelModel):
    notifications: list[NotificationRead]
    unread_count: int
    pagination: Pagination

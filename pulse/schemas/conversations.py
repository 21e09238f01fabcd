from __future__ import annotations

from pydantic import Field

from pulse.schemas.base import CamelModel, Pagination, UtcDatetime
from pulse.schemas.messages import MessageRead
from pulse.schemas.users import UserPublic


class DirectConversationCreateRequest(CamelModel):
    recipient_id: str = Field(min_length=1, max_length=64)


class ConversationSummary(CamelModel):
    id: str
    is_group: bool
    group_name: str | None = None
    group_image: str | None = None
    is_active: bool
    notifications_enabled: bool
    last_activity: UtcDatetime
    created_at: UtcDatetime
    participant_ids: list[str]
    participants: list[UserPublic] = Field(default_factory=list)
    other_participant: UserPublic | None = None
    display_name: str
    display_image: str | None = None
    last_message: MessageRead | None = None
    unread_count: int = 0
    is_archived: bool = False


class ConversationResponse(CamelModel):
    conversation: ConversationSummary


class ConversationListResponse(CamelModel):
    conversations: list[ConversationSummary]
    pagination: Pagination


class ConversationMessagesResponse(CamelModel):
    messages: list[MessageRead]
    conversation: ConversationSummary
    pagination: Pagination

from __future__ import annotations

from typing import Literal

from pydantic import Field

from pulse.schemas.base import CamelModel, UtcDatetime
from pulse.schemas.users import UserPublic

ContentType = Literal["text", "image", "video", "file"]


class MediaDescriptor(CamelModel):
    url: str = Field(default="", max_length=1024)
    filename: str | None = Field(default=None, max_length=255)
    size: int | None = Field(default=None, ge=0)
    mimetype: str | None = Field(default=None, max_length=127)


class SendMessageRequest(CamelModel):
    recipient_id: str = Field(min_length=1, max_length=64)
    # Length and blankness are checked by the service so they map to 400s.
    content: str | None = None
    type: ContentType = "text"
    media: MediaDescriptor | None = None


class DeleteMessageRequest(CamelModel):
    delete_for: Literal["me", "everyone"] = "me"


class MessageContent(CamelModel):
    type: ContentType
    text: str | None = None
    media: MediaDescriptor | None = None


class ReadReceipt(CamelModel):
    user_id: str
    read_at: UtcDatetime


class MessageRead(CamelModel):
    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: MessageContent
    read_by: list[ReadReceipt] = Field(default_factory=list)
    is_read: bool = False
    is_deleted: bool = False
    created_at: UtcDatetime
    sender: UserPublic | None = None
    recipient: UserPublic | None = None


class SendMessageResponse(CamelModel):
    message: MessageRead
    conversation_id: str


class UnreadCountResponse(CamelModel):
    unread_count: int

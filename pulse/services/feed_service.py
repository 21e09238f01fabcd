from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from pulse.core.settings import get_settings
from pulse.models import Conversation
from pulse.schemas.conversations import ConversationSummary
from pulse.schemas.users import UserPublic
from pulse.services import conversation_service, message_service, user_hydration_service

logger = logging.getLogger(__name__)


def other_participant_id(conversation: Conversation, requester_id: str) -> str | None:
    """The counterpart in a direct conversation. Groups have no single counterpart."""
    if conversation.is_group:
        return None
    return next((user_id for user_id in conversation.participant_ids if user_id != requester_id), None)


def _display_fields(conversation: Conversation, other: UserPublic | None) -> tuple[str, str | None]:
    settings = get_settings()
    display_name = conversation.group_name or (other.username if other else None) or settings.default_display_name
    display_image = conversation.group_image or (other.avatar if other else None) or settings.default_avatar_url
    return display_name, display_image


def build_conversation_summaries(
    db: Session,
    *,
    requester_id: str,
    conversations: list[Conversation],
) -> list[ConversationSummary]:
    """Compose the conversation feed from bare store rows.

    Adds participant profiles, the other participant, display name/image,
    the visible last message, per-conversation unread counts and the
    requester's archive flag.
    """
    if not conversations:
        return []

    conversation_ids = [conversation.id for conversation in conversations]
    users_by_id = user_hydration_service.profiles_by_id(
        db,
        user_hydration_service.collect_user_ids_from_conversations(conversations),
    )
    unread = message_service.unread_counts_by_conversation(db, user_id=requester_id, conversation_ids=conversation_ids)
    archived = conversation_service.archived_conversation_ids(
        db,
        user_id=requester_id,
        conversation_ids=conversation_ids,
    )

    last_message_ids = [c.last_message_id for c in conversations if c.last_message_id]
    last_messages = message_service.load_messages(db, last_message_ids)
    hidden = message_service.hidden_message_ids(db, user_id=requester_id, message_ids=last_message_ids)

    summaries: list[ConversationSummary] = []
    for conversation in conversations:
        other_id = other_participant_id(conversation, requester_id)
        other = users_by_id.get(other_id) if other_id else None
        display_name, display_image = _display_fields(conversation, other)

        last_message = last_messages.get(conversation.last_message_id or "")
        if last_message is not None and (last_message.is_deleted or last_message.id in hidden):
            last_message = None

        summaries.append(
            ConversationSummary(
                id=conversation.id,
                is_group=conversation.is_group,
                group_name=conversation.group_name,
                group_image=conversation.group_image,
                is_active=conversation.is_active,
                notifications_enabled=conversation.notifications_enabled,
                last_activity=conversation.last_activity,
                created_at=conversation.created_at,
                participant_ids=conversation.participant_ids,
                participants=[users_by_id[uid] for uid in conversation.participant_ids if uid in users_by_id],
                other_participant=other,
                display_name=display_name,
                display_image=display_image,
                last_message=message_service.serialize_message(last_message, users_by_id) if last_message else None,
                unread_count=unread.get(conversation.id, 0),
                is_archived=conversation.id in archived,
            )
        )
    logger.debug("Built %s conversation summaries requester_id=%s", len(summaries), requester_id)
    return summaries


def build_conversation_summary(db: Session, *, requester_id: str, conversation: Conversation) -> ConversationSummary:
    return build_conversation_summaries(db, requester_id=requester_id, conversations=[conversation])[0]

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Iterable, Literal, Mapping

from sqlalchemy import exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from pulse.core.errors import bad_request, forbidden, not_found
from pulse.core.settings import get_settings
from pulse.models import Conversation, Message, MessageHiddenFor, MessageReadReceipt, User
from pulse.schemas.messages import MediaDescriptor, MessageContent, MessageRead, ReadReceipt
from pulse.schemas.users import UserPublic
from pulse.services import conversation_service

logger = logging.getLogger(__name__)

DeleteScope = Literal["me", "everyone"]


def _message_not_found():
    return not_found("message_not_found", "Message not found")


def validate_content(
    content_type: str,
    text: str | None,
    media: MediaDescriptor | None,
) -> tuple[str | None, MediaDescriptor | None]:
    """Normalize message content, raising a 400 for anything unsendable.

    Text messages are trimmed and must be 1..message_max_length characters;
    every other type needs a media descriptor with a non-empty url.
    """
    if content_type == "text":
        trimmed = (text or "").strip()
        if not trimmed:
            raise bad_request("message_content_required", "Message content is required")
        max_length = get_settings().message_max_length
        if len(trimmed) > max_length:
            raise bad_request("message_too_long", f"Message too long (max {max_length} characters)")
        return trimmed, None

    if media is None or not media.url.strip():
        raise bad_request("media_required", f"A media url is required for {content_type} messages")
    return None, media


def send_message(
    db: Session,
    *,
    sender_id: str,
    recipient_id: str,
    content_type: str = "text",
    text: str | None = None,
    media: MediaDescriptor | None = None,
) -> Message:
    logger.info("Send message attempt sender_id=%s recipient_id=%s type=%s", sender_id, recipient_id, content_type)
    if sender_id == recipient_id:
        logger.warning("Rejected message to self sender_id=%s", sender_id)
        raise bad_request("cannot_message_self", "Cannot send message to yourself")

    text, media = validate_content(content_type, text, media)

    if db.get(User, recipient_id) is None:
        logger.warning("Recipient not found recipient_id=%s", recipient_id)
        raise not_found("recipient_not_found", "Recipient not found")

    conversation, _ = conversation_service.ensure_direct_conversation(
        db,
        user_id=sender_id,
        other_user_id=recipient_id,
    )

    now = datetime.now(UTC)
    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        recipient_id=recipient_id,
        content_type=content_type,
        text=text,
        created_at=now,
    )
    if media is not None:
        message.media_url = media.url.strip()
        message.media_filename = media.filename
        message.media_size = media.size
        message.media_mimetype = media.mimetype
    db.add(message)
    db.flush()

    conversation_service.advance_last_activity(
        db,
        conversation_id=conversation.id,
        message_id=message.id,
        occurred_at=now,
    )
    db.commit()
    logger.info("Message persisted message_id=%s conversation_id=%s", message.id, conversation.id)
    return message


def _has_receipt(message: Message, reader_id: str) -> bool:
    return any(receipt.user_id == reader_id for receipt in message.read_receipts)


def _insert_receipt(db: Session, *, message_id: str, reader_id: str) -> bool:
    db.add(MessageReadReceipt(message_id=message_id, user_id=reader_id, read_at=datetime.now(UTC)))
    try:
        db.commit()
    except IntegrityError:
        # Another request recorded the same receipt first.
        db.rollback()
        return False
    return True


def _record_receipts(db: Session, *, messages: Iterable[Message], reader_id: str) -> int:
    pending = [
        message
        for message in messages
        if message.recipient_id == reader_id and message.sender_id != reader_id and not _has_receipt(message, reader_id)
    ]
    if not pending:
        return 0

    now = datetime.now(UTC)
    for message in pending:
        message.read_receipts.append(MessageReadReceipt(user_id=reader_id, read_at=now))
    try:
        db.commit()
    except IntegrityError:
        logger.debug("Bulk read receipt conflicted; retrying one by one reader_id=%s", reader_id)
        db.rollback()
        return sum(1 for message in pending if _insert_receipt(db, message_id=message.id, reader_id=reader_id))
    return len(pending)


def mark_read(db: Session, *, message_id: str, reader_id: str) -> bool:
    message = db.get(Message, message_id)
    if message is None or reader_id not in (message.sender_id, message.recipient_id):
        logger.warning("Mark read on unknown message message_id=%s reader_id=%s", message_id, reader_id)
        raise _message_not_found()

    if reader_id == message.sender_id:
        return False
    if db.get(MessageReadReceipt, {"message_id": message_id, "user_id": reader_id}) is not None:
        return False

    recorded = _insert_receipt(db, message_id=message_id, reader_id=reader_id)
    logger.debug("Mark read message_id=%s reader_id=%s recorded=%s", message_id, reader_id, recorded)
    return recorded


def list_conversation_messages(
    db: Session,
    *,
    conversation_id: str,
    user_id: str,
    limit: int,
    page: int,
) -> tuple[Conversation, list[Message]]:
    """Return one page of visible messages, oldest first, and mark the page read.

    Viewing a page counts as reading every message on it that is addressed
    to ``user_id``.
    """
    conversation = conversation_service.get_conversation_for_participant(
        db,
        conversation_id=conversation_id,
        user_id=user_id,
    )
    hidden_ids = select(MessageHiddenFor.message_id).where(MessageHiddenFor.user_id == user_id)
    rows = list(
        db.scalars(
            select(Message)
            .options(selectinload(Message.read_receipts))
            .where(Message.conversation_id == conversation_id)
            .where(Message.is_deleted.is_(False))
            .where(Message.id.not_in(hidden_ids))
            .order_by(Message.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
    )
    marked = _record_receipts(db, messages=rows, reader_id=user_id)
    logger.debug(
        "Listed messages conversation_id=%s user_id=%s returned=%s marked_read=%s",
        conversation_id,
        user_id,
        len(rows),
        marked,
    )
    rows.reverse()
    return conversation, rows


def _unread_filter(user_id: str):
    receipt_exists = exists().where(
        MessageReadReceipt.message_id == Message.id,
        MessageReadReceipt.user_id == user_id,
    )
    return (Message.recipient_id == user_id, Message.is_deleted.is_(False), ~receipt_exists)


def unread_count(db: Session, *, user_id: str) -> int:
    return db.scalar(select(func.count(Message.id)).where(*_unread_filter(user_id))) or 0


def unread_counts_by_conversation(db: Session, *, user_id: str, conversation_ids: list[str]) -> dict[str, int]:
    if not conversation_ids:
        return {}
    rows = db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(Message.conversation_id.in_(conversation_ids))
        .where(*_unread_filter(user_id))
        .group_by(Message.conversation_id)
    ).all()
    return {conversation_id: count for conversation_id, count in rows}


def delete_message(db: Session, *, message_id: str, user_id: str, delete_for: DeleteScope) -> Message:
    message = db.get(Message, message_id)
    if message is None:
        raise _message_not_found()

    if user_id not in (message.sender_id, message.recipient_id):
        logger.warning("Unauthorized delete message_id=%s user_id=%s", message_id, user_id)
        raise forbidden("not_authorized", "Not authorized to delete this message")

    if delete_for == "everyone":
        if user_id != message.sender_id:
            raise forbidden(
                "delete_for_everyone_forbidden",
                "Can only delete for everyone if you sent the message",
            )
        message.is_deleted = True
        db.commit()
        logger.info("Message deleted for everyone message_id=%s", message_id)
        return message

    if db.get(MessageHiddenFor, {"message_id": message_id, "user_id": user_id}) is None:
        db.add(MessageHiddenFor(message_id=message_id, user_id=user_id, hidden_at=datetime.now(UTC)))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
        logger.info("Message hidden message_id=%s user_id=%s", message_id, user_id)
    return message


def load_messages(db: Session, message_ids: Iterable[str]) -> dict[str, Message]:
    ids = [message_id for message_id in message_ids if message_id]
    if not ids:
        return {}
    rows = db.scalars(select(Message).options(selectinload(Message.read_receipts)).where(Message.id.in_(ids))).all()
    return {message.id: message for message in rows}


def hidden_message_ids(db: Session, *, user_id: str, message_ids: list[str]) -> set[str]:
    if not message_ids:
        return set()
    return set(
        db.scalars(
            select(MessageHiddenFor.message_id).where(
                MessageHiddenFor.user_id == user_id,
                MessageHiddenFor.message_id.in_(message_ids),
            )
        ).all()
    )


def serialize_message(message: Message, users_by_id: Mapping[str, UserPublic] | None = None) -> MessageRead:
    media = None
    if message.content_type != "text":
        media = MediaDescriptor(
            url=message.media_url or "",
            filename=message.media_filename,
            size=message.media_size,
            mimetype=message.media_mimetype,
        )
    users_by_id = users_by_id or {}
    receipts = [ReadReceipt(user_id=receipt.user_id, read_at=receipt.read_at) for receipt in message.read_receipts]
    return MessageRead(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        content=MessageContent(type=message.content_type, text=message.text, media=media),
        read_by=receipts,
        is_read=bool(receipts),
        is_deleted=message.is_deleted,
        created_at=message.created_at,
        sender=users_by_id.get(message.sender_id),
        recipient=users_by_id.get(message.recipient_id),
    )

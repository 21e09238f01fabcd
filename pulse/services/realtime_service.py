from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pulse.models import Message, RealtimeOutboxEvent
from pulse.services import message_service, user_hydration_service

logger = logging.getLogger(__name__)

NEW_MESSAGE_EVENT = "newMessage"
MESSAGE_DELETED_EVENT = "messageDeleted"


def _enqueue_event(
    db: Session,
    *,
    event_type: str,
    recipient_id: str,
    build_payload: Callable[[], dict[str, object]],
) -> bool:
    """Queue an event for the recipient's room after the primary write has committed.

    Delivery is best effort: a failure while building or storing the event
    is logged and never reaches the caller, since the recipient can always
    recover state by fetching.
    """
    now = datetime.now(UTC)
    try:
        event_payload = {"occurred_at": now.isoformat(), "payload": build_payload()}
        db.add(
            RealtimeOutboxEvent(
                event_type=event_type,
                recipient_id=recipient_id,
                payload_json=json.dumps(event_payload, separators=(",", ":"), sort_keys=True),
                next_attempt_at=now,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to enqueue realtime event type=%s recipient_id=%s", event_type, recipient_id)
        return False
    logger.debug("Realtime event enqueued type=%s recipient_id=%s", event_type, recipient_id)
    return True


def emit_new_message(db: Session, *, message: Message) -> bool:
    def build_payload() -> dict[str, object]:
        users_by_id = user_hydration_service.profiles_by_id(db, [message.sender_id, message.recipient_id])
        return {
            "message": message_service.serialize_message(message, users_by_id).to_json(),
            "conversation": message.conversation_id,
        }

    return _enqueue_event(db, event_type=NEW_MESSAGE_EVENT, recipient_id=message.recipient_id, build_payload=build_payload)


def emit_message_deleted(db: Session, *, message: Message, deleted_by: str) -> bool:
    other_user_id = message.recipient_id if deleted_by == message.sender_id else message.sender_id

    def build_payload() -> dict[str, object]:
        return {"messageId": message.id, "conversationId": message.conversation_id}

    return _enqueue_event(db, event_type=MESSAGE_DELETED_EVENT, recipient_id=other_user_id, build_payload=build_payload)

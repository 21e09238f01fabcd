from __future__ import annotations

from datetime import UTC, datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from pulse.core.errors import bad_request, not_found
from pulse.models import Conversation, ConversationArchive, ConversationParticipant, User, direct_key_for

logger = logging.getLogger(__name__)


def _conversation_not_found():
    return not_found("conversation_not_found", "Conversation not found")


def find_direct_conversation(db: Session, *, user_id: str, other_user_id: str) -> Conversation | None:
    return db.scalar(
        select(Conversation)
        .options(selectinload(Conversation.participants))
        .where(Conversation.direct_key == direct_key_for(user_id, other_user_id))
        .where(Conversation.is_group.is_(False))
        .where(Conversation.is_active.is_(True))
    )


def ensure_direct_conversation(db: Session, *, user_id: str, other_user_id: str) -> tuple[Conversation, bool]:
    """Return the live direct conversation for the pair, creating it if needed.

    Callers are expected to have validated both identities. Two writers racing on
    the same pair are serialized by the unique ``direct_key``: the loser rolls
    back and returns the winner's row.
    """
    existing = find_direct_conversation(db, user_id=user_id, other_user_id=other_user_id)
    if existing is not None:
        logger.debug("Reusing direct conversation conversation_id=%s", existing.id)
        return existing, False

    conversation = Conversation(
        is_group=False,
        direct_key=direct_key_for(user_id, other_user_id),
        last_activity=datetime.now(UTC),
    )
    conversation.participants = [
        ConversationParticipant(user_id=user_id, position=0),
        ConversationParticipant(user_id=other_user_id, position=1),
    ]
    db.add(conversation)
    try:
        db.commit()
    except IntegrityError:
        logger.warning(
            "Direct conversation insert conflicted; loading existing users=%s,%s",
            user_id,
            other_user_id,
        )
        db.rollback()
        existing = find_direct_conversation(db, user_id=user_id, other_user_id=other_user_id)
        if existing is None:
            raise
        return existing, False

    logger.info("Direct conversation created conversation_id=%s users=%s,%s", conversation.id, user_id, other_user_id)
    return conversation, True


def get_or_create_direct_conversation(db: Session, *, user_id: str, other_user_id: str) -> tuple[Conversation, bool]:
    logger.info("Open or create direct conversation user_id=%s other_user_id=%s", user_id, other_user_id)
    if user_id == other_user_id:
        logger.warning("Rejected direct conversation with self user_id=%s", user_id)
        raise bad_request("invalid_target", "Cannot start conversation with yourself")

    if db.get(User, other_user_id) is None:
        logger.warning("Direct conversation target not found other_user_id=%s", other_user_id)
        raise not_found("user_not_found", "User not found")

    return ensure_direct_conversation(db, user_id=user_id, other_user_id=other_user_id)


def get_conversation_for_participant(db: Session, *, conversation_id: str, user_id: str) -> Conversation:
    conversation = db.scalar(
        select(Conversation)
        .options(selectinload(Conversation.participants))
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(Conversation.id == conversation_id)
        .where(Conversation.is_active.is_(True))
        .where(ConversationParticipant.user_id == user_id)
    )
    if conversation is None:
        logger.warning("Conversation lookup failed user_id=%s conversation_id=%s", user_id, conversation_id)
        raise _conversation_not_found()
    return conversation


def list_user_conversations(db: Session, user_id: str, *, limit: int, page: int) -> list[Conversation]:
    logger.debug("Listing conversations user_id=%s limit=%s page=%s", user_id, limit, page)
    rows = db.scalars(
        select(Conversation)
        .options(selectinload(Conversation.participants))
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(ConversationParticipant.user_id == user_id)
        .where(Conversation.is_active.is_(True))
        .order_by(Conversation.last_activity.desc(), Conversation.id.asc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).all()
    return list(rows)


def advance_last_activity(db: Session, *, conversation_id: str, message_id: str, occurred_at: datetime) -> bool:
    """Point the conversation at ``message_id`` unless a newer message already got there.

    Does not commit. Returns False when a concurrent, later message had already
    advanced the pointer.
    """
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .where(Conversation.last_activity <= occurred_at)
        .values(last_activity=occurred_at, last_message_id=message_id, updated_at=occurred_at)
        .execution_options(synchronize_session=False)
    )
    advanced = result.rowcount > 0
    if not advanced:
        logger.debug("Last activity not advanced conversation_id=%s message_id=%s", conversation_id, message_id)
    return advanced


def leave_conversation(db: Session, *, conversation_id: str, user_id: str) -> Conversation:
    conversation = get_conversation_for_participant(db, conversation_id=conversation_id, user_id=user_id)
    conversation.participants = [p for p in conversation.participants if p.user_id != user_id]

    # The remaining party keeps the conversation until it leaves too.
    if not conversation.is_group:
        conversation.direct_key = None
    if not conversation.participants:
        conversation.is_active = False
    conversation.updated_at = datetime.now(UTC)
    db.commit()
    logger.info(
        "User left conversation user_id=%s conversation_id=%s active=%s",
        user_id,
        conversation_id,
        conversation.is_active,
    )
    return conversation


def archive_conversation(db: Session, *, conversation_id: str, user_id: str) -> Conversation:
    conversation = get_conversation_for_participant(db, conversation_id=conversation_id, user_id=user_id)
    if db.get(ConversationArchive, {"conversation_id": conversation_id, "user_id": user_id}) is None:
        db.add(ConversationArchive(conversation_id=conversation_id, user_id=user_id, archived_at=datetime.now(UTC)))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
        logger.info("Conversation archived conversation_id=%s user_id=%s", conversation_id, user_id)
    return conversation


def unarchive_conversation(db: Session, *, conversation_id: str, user_id: str) -> Conversation:
    conversation = get_conversation_for_participant(db, conversation_id=conversation_id, user_id=user_id)
    record = db.get(ConversationArchive, {"conversation_id": conversation_id, "user_id": user_id})
    if record is not None:
        db.delete(record)
        db.commit()
        logger.info("Conversation unarchived conversation_id=%s user_id=%s", conversation_id, user_id)
    return conversation


def archived_conversation_ids(db: Session, *, user_id: str, conversation_ids: list[str]) -> set[str]:
    if not conversation_ids:
        return set()
    return set(
        db.scalars(
            select(ConversationArchive.conversation_id).where(
                ConversationArchive.user_id == user_id,
                ConversationArchive.conversation_id.in_(conversation_ids),
            )
        ).all()
    )

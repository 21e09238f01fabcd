from __future__ import annotations

from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from pulse.core.errors import bad_request, not_found
from pulse.core.settings import get_settings
from pulse.models import NOTIFICATION_MESSAGES, Notification

logger = logging.getLogger(__name__)


def _retention_cutoff() -> datetime:
    return datetime.now(UTC) - timedelta(days=get_settings().notification_retention_days)


def _same_reference(column, value: str | None):
    return column.is_(None) if value is None else column == value


def create_notification(
    db: Session,
    *,
    recipient_id: str,
    sender_id: str,
    type: str,
    related_post_id: str | None = None,
    related_comment_id: str | None = None,
    related_story_id: str | None = None,
) -> Notification | None:
    """Record that ``sender_id`` did something ``recipient_id`` should hear about.

    Unknown types are rejected. Returns None for self-directed activity.
    A repeat of the same event inside the debounce window returns the
    earlier record instead of creating a new one.
    """
    if type not in NOTIFICATION_MESSAGES:
        logger.warning("Rejected notification type=%s recipient_id=%s", type, recipient_id)
        raise bad_request("invalid_notification_type", f"Unknown notification type: {type}")
    if recipient_id == sender_id:
        return None

    window_start = datetime.now(UTC) - timedelta(seconds=get_settings().notification_debounce_seconds)
    existing = db.scalar(
        select(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.sender_id == sender_id,
            Notification.type == type,
            _same_reference(Notification.related_post_id, related_post_id),
            _same_reference(Notification.related_comment_id, related_comment_id),
            _same_reference(Notification.related_story_id, related_story_id),
            Notification.created_at >= window_start,
        )
        .order_by(Notification.created_at.desc())
        .limit(1)
    )
    if existing is not None:
        logger.debug("Debounced notification notification_id=%s type=%s", existing.id, type)
        return existing

    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=type,
        message=NOTIFICATION_MESSAGES[type],
        related_post_id=related_post_id,
        related_comment_id=related_comment_id,
        related_story_id=related_story_id,
        created_at=datetime.now(UTC),
    )
    db.add(notification)
    db.commit()
    logger.info("Notification created notification_id=%s recipient_id=%s type=%s", notification.id, recipient_id, type)
    return notification


def list_notifications(db: Session, *, user_id: str, limit: int, page: int) -> list[Notification]:
    return list(
        db.scalars(
            select(Notification)
            .where(Notification.recipient_id == user_id, Notification.created_at >= _retention_cutoff())
            .order_by(Notification.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()
    )


def unread_notification_count(db: Session, *, user_id: str) -> int:
    return (
        db.scalar(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == user_id,
                Notification.read.is_(False),
                Notification.created_at >= _retention_cutoff(),
            )
        )
        or 0
    )


def _get_owned(db: Session, *, notification_id: str, user_id: str) -> Notification:
    notification = db.scalar(
        select(Notification).where(Notification.id == notification_id, Notification.recipient_id == user_id)
    )
    if notification is None:
        raise not_found("notification_not_found", "Notification not found")
    return notification


def mark_notification_read(db: Session, *, notification_id: str, user_id: str) -> Notification:
    notification = _get_owned(db, notification_id=notification_id, user_id=user_id)
    notification.read = True
    notification.read_at = datetime.now(UTC)
    db.commit()
    return notification


def mark_all_notifications_read(db: Session, *, user_id: str) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.read.is_(False))
        .values(read=True, read_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Marked %s notifications read user_id=%s", result.rowcount, user_id)
    return result.rowcount


def delete_notification(db: Session, *, notification_id: str, user_id: str) -> None:
    notification = _get_owned(db, notification_id=notification_id, user_id=user_id)
    db.delete(notification)
    db.commit()


def purge_expired_notifications(db: Session) -> int:
    result = db.execute(
        delete(Notification)
        .where(Notification.created_at < _retention_cutoff())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("Purged %s expired notifications", result.rowcount)
    return result.rowcount

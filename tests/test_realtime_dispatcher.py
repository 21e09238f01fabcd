from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
import json

from sqlalchemy import select

import pulse.db.session as db_session
from pulse.models import RealtimeOutboxEvent
from pulse.realtime.connection_manager import ConnectionManager
from pulse.realtime.dispatcher import RealtimeDispatcher
from pulse.realtime.publisher import RealtimePublisher


class _FakePublisher:
    def __init__(self, *, failures: int = 0) -> None:
        self._remaining_failures = failures
        self.published_event_ids: list[str] = []

    async def publish(self, event: RealtimeOutboxEvent) -> int:
        if self._remaining_failures > 0:
            self._remaining_failures -= 1
            raise RuntimeError("simulated publish failure")
        self.published_event_ids.append(event.event_id)
        return 1


def _setup_database(tmp_path) -> None:
    database_path = tmp_path / "dispatcher.db"
    db_session.configure_engine(f"sqlite:///{database_path}")
    db_session.init_db()


def _create_event(recipient_id: str = "user-1") -> RealtimeOutboxEvent:
    payload = {
        "occurred_at": datetime.now(UTC).isoformat(),
        "payload": {"messageId": "msg-1", "conversationId": "conversation-1"},
    }
    return RealtimeOutboxEvent(
        event_type="messageDeleted",
        recipient_id=recipient_id,
        payload_json=json.dumps(payload),
        next_attempt_at=datetime.now(UTC),
    )


def _dispatcher(publisher, *, max_attempts: int = 1) -> RealtimeDispatcher:
    return RealtimeDispatcher(
        publisher=publisher,
        session_factory=db_session.open_session,
        poll_interval_sec=0.01,
        batch_size=50,
        max_attempts=max_attempts,
    )


def _only_event() -> RealtimeOutboxEvent:
    with db_session.open_session() as db:
        event = db.scalar(select(RealtimeOutboxEvent))
        assert event is not None
        return event


def test_dispatcher_marks_events_as_published(tmp_path):
    _setup_database(tmp_path)
    with db_session.open_session() as db:
        db.add(_create_event())
        db.commit()

    publisher = _FakePublisher()
    processed = asyncio.run(_dispatcher(publisher).process_once())
    assert processed == 1

    event = _only_event()
    assert event.published_at is not None
    assert event.attempts == 0
    assert event.event_id in publisher.published_event_ids
    assert asyncio.run(_dispatcher(publisher).process_once()) == 0


def test_failed_publish_is_dropped_without_retry_by_default(tmp_path):
    _setup_database(tmp_path)
    with db_session.open_session() as db:
        db.add(_create_event())
        db.commit()

    publisher = _FakePublisher(failures=1)
    dispatcher = _dispatcher(publisher)
    assert asyncio.run(dispatcher.process_once()) == 1

    event = _only_event()
    assert event.published_at is not None
    assert event.attempts == 1
    assert event.last_error == "simulated publish failure"
    assert asyncio.run(dispatcher.process_once()) == 0
    assert publisher.published_event_ids == []


def test_dispatcher_retries_when_attempts_remain(tmp_path):
    _setup_database(tmp_path)
    with db_session.open_session() as db:
        db.add(_create_event())
        db.commit()

    publisher = _FakePublisher(failures=1)
    dispatcher = _dispatcher(publisher, max_attempts=2)
    assert asyncio.run(dispatcher.process_once()) == 1

    with db_session.open_session() as db:
        event = db.scalar(select(RealtimeOutboxEvent))
        assert event.published_at is None
        assert event.attempts == 1
        now = datetime.now(UTC)
        if event.next_attempt_at.tzinfo is None:
            now = now.replace(tzinfo=None)
        assert event.next_attempt_at > now
        event.next_attempt_at = now - timedelta(seconds=1)
        db.commit()

    assert asyncio.run(dispatcher.process_once()) == 1
    event = _only_event()
    assert event.published_at is not None
    assert event.event_id in publisher.published_event_ids


def test_publisher_reports_zero_for_offline_recipient():
    publisher = RealtimePublisher(ConnectionManager())
    event = _create_event("nobody-online")
    event.event_id = "event-1"

    assert asyncio.run(publisher.publish(event)) == 0

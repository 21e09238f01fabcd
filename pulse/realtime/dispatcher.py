from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
import logging
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from pulse.models import RealtimeOutboxEvent
from pulse.realtime.publisher import RealtimePublisher

logger = logging.getLogger(__name__)

MAX_RETRY_DELAY_SEC = 30.0


class RealtimeDispatcher:
    """Drains the realtime outbox into live sockets.

    Events reaching no socket are finished all the same. A publish error is
    retried with backoff until ``max_attempts`` is spent, then the event is
    dropped with its last error kept for inspection.
    """

    def __init__(
        self,
        *,
        publisher: RealtimePublisher,
        session_factory: Callable[[], Session],
        poll_interval_sec: float,
        batch_size: int,
        max_attempts: int = 1,
    ) -> None:
        self._publisher = publisher
        self._session_factory = session_factory
        self._poll_interval_sec = poll_interval_sec
        self._batch_size = batch_size
        self._max_attempts = max(1, max_attempts)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info("Realtime dispatcher started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Realtime dispatcher stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                processed = await self.process_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime dispatcher iteration failed")
                processed = 0
            if processed == 0:
                await asyncio.sleep(self._poll_interval_sec)

    def _record_failure(self, event: RealtimeOutboxEvent, exc: Exception) -> None:
        now = datetime.now(UTC)
        event.attempts += 1
        event.last_error = str(exc)[:1000]
        if event.attempts >= self._max_attempts:
            event.published_at = now
            logger.warning("Realtime event dropped event_id=%s attempts=%s error=%s", event.event_id, event.attempts, exc)
            return
        delay = min(MAX_RETRY_DELAY_SEC, 0.5 * (2 ** (event.attempts - 1)))
        event.next_attempt_at = now + timedelta(seconds=delay)
        logger.warning("Realtime publish failed event_id=%s attempts=%s error=%s", event.event_id, event.attempts, exc)

    async def process_once(self) -> int:
        now = datetime.now(UTC)
        with self._session_factory() as db:
            events = list(
                db.scalars(
                    select(RealtimeOutboxEvent)
                    .where(RealtimeOutboxEvent.published_at.is_(None))
                    .where(RealtimeOutboxEvent.next_attempt_at <= now)
                    .order_by(RealtimeOutboxEvent.id.asc())
                    .limit(self._batch_size)
                ).all()
            )
            if not events:
                return 0

            for event in events:
                try:
                    await self._publisher.publish(event)
                except Exception as exc:
                    self._record_failure(event, exc)
                    continue
                event.published_at = datetime.now(UTC)
                event.last_error = None

            db.commit()
            return len(events)

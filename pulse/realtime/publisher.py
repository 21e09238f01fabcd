from __future__ import annotations

import json
import logging

from pulse.models import RealtimeOutboxEvent
from pulse.realtime.connection_manager import ConnectionManager
from pulse.realtime.protocol import event_frame

logger = logging.getLogger(__name__)


class RealtimePublisher:
    def __init__(self, connection_manager: ConnectionManager) -> None:
        self._connection_manager = connection_manager

    async def publish(self, event: RealtimeOutboxEvent) -> int:
        """Push one outbox event to its recipient's room and return the number of sockets reached."""
        decoded = json.loads(event.payload_json)
        if not isinstance(decoded, dict):
            raise ValueError("Realtime event payload_json must decode to an object")

        occurred_at = decoded.get("occurred_at")
        payload = decoded.get("payload")
        if not isinstance(occurred_at, str) or not isinstance(payload, dict):
            raise ValueError("Realtime event payload_json is missing required fields")

        frame = event_frame(
            event_type=event.event_type,
            event_id=event.event_id,
            occurred_at=occurred_at,
            payload=payload,
        )
        delivered = await self._connection_manager.send_to_user(event.recipient_id, frame)
        if delivered == 0:
            logger.debug("Recipient offline; dropping event event_id=%s recipient_id=%s", event.event_id, event.recipient_id)
        else:
            logger.debug(
                "Realtime event published event_id=%s type=%s recipient_id=%s delivered=%s",
                event.event_id,
                event.event_type,
                event.recipient_id,
                delivered,
            )
        return delivered

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    connection_id: str
    user_id: str
    websocket: WebSocket
    outgoing_queue: asyncio.Queue[dict[str, object]]
    writer_task: asyncio.Task[None] | None = None


class ConnectionManager:
    """Process-local registry of live sockets, one room per user.

    Nothing here is authoritative: a user with no connection simply misses
    the push and catches up on the next fetch.
    """

    def __init__(self, *, queue_size: int = 200) -> None:
        self._queue_size = queue_size
        self._connections: dict[str, ConnectionContext] = {}
        self._rooms: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def register(self, websocket: WebSocket, *, user_id: str) -> ConnectionContext:
        context = ConnectionContext(
            connection_id=str(uuid.uuid4()),
            user_id=user_id,
            websocket=websocket,
            outgoing_queue=asyncio.Queue(maxsize=self._queue_size),
        )
        async with self._lock:
            self._connections[context.connection_id] = context
            self._rooms.setdefault(user_id, set()).add(context.connection_id)
            context.writer_task = asyncio.create_task(self._writer_loop(context.connection_id))
        logger.info("WebSocket joined room connection_id=%s user_id=%s", context.connection_id, user_id)
        return context

    async def unregister(self, connection_id: str, *, close_socket: bool = True, close_code: int = 1000) -> None:
        async with self._lock:
            context = self._connections.pop(connection_id, None)
            if context is None:
                return
            room = self._rooms.get(context.user_id)
            if room is not None:
                room.discard(connection_id)
                if not room:
                    self._rooms.pop(context.user_id, None)

        current_task = asyncio.current_task()
        if context.writer_task is not None and context.writer_task is not current_task:
            context.writer_task.cancel()
            try:
                await context.writer_task
            except asyncio.CancelledError:
                pass

        if close_socket:
            try:
                await context.websocket.close(code=close_code)
            except Exception:
                logger.debug("WebSocket already closed connection_id=%s", connection_id)
        logger.info("WebSocket left room connection_id=%s user_id=%s", connection_id, context.user_id)

    async def _writer_loop(self, connection_id: str) -> None:
        while True:
            async with self._lock:
                context = self._connections.get(connection_id)
            if context is None:
                return

            try:
                payload = await context.outgoing_queue.get()
                await context.websocket.send_json(payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "WebSocket writer failed connection_id=%s user_id=%s error=%s",
                    connection_id,
                    context.user_id,
                    exc,
                )
                await self.unregister(connection_id, close_socket=False)
                return

    async def send(self, connection_id: str, payload: dict[str, object]) -> bool:
        async with self._lock:
            context = self._connections.get(connection_id)
        if context is None:
            return False

        try:
            context.outgoing_queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Slow WebSocket client disconnected connection_id=%s", connection_id)
            await self.unregister(connection_id, close_socket=True, close_code=1013)
            return False

    async def send_to_user(self, user_id: str, payload: dict[str, object]) -> int:
        async with self._lock:
            connection_ids = list(self._rooms.get(user_id, set()))

        delivered = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, payload):
                delivered += 1
        return delivered

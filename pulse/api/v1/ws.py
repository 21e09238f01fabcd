from __future__ import annotations

import asyncio
from collections import deque
import logging
from time import monotonic

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pulse.core.errors import APIError
from pulse.core.rate_limit import allow_event
from pulse.core.security import user_id_from_token
from pulse.core.settings import get_settings
from pulse.db.session import open_session
from pulse.models import User
from pulse.realtime.connection_manager import ConnectionManager
from pulse.realtime.protocol import PingCommand, ProtocolError, error_frame, parse_command, pong_frame, welcome_frame

logger = logging.getLogger(__name__)
router = APIRouter(tags=["ws"])

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


def _extract_access_token(websocket: WebSocket) -> str | None:
    auth_header = websocket.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return websocket.query_params.get("access_token")


def _authenticate(websocket: WebSocket) -> str | None:
    token = _extract_access_token(websocket)
    if not token:
        return None
    try:
        user_id = user_id_from_token(token)
    except APIError:
        return None
    with open_session() as db:
        if db.get(User, user_id) is None:
            return None
    return user_id


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Join the caller's personal room; events are pushed, the client only pings."""
    settings = get_settings()
    user_id = _authenticate(websocket)
    if user_id is None:
        logger.warning("WebSocket rejected: missing or invalid token")
        await websocket.close(code=POLICY_VIOLATION)
        return

    connection_manager: ConnectionManager | None = getattr(websocket.app.state, "connection_manager", None)
    if connection_manager is None:
        await websocket.close(code=INTERNAL_ERROR)
        return

    await websocket.accept()
    context = await connection_manager.register(websocket, user_id=user_id)
    await connection_manager.send(
        context.connection_id,
        welcome_frame(connection_id=context.connection_id, user_id=user_id, heartbeat_sec=settings.ws_heartbeat_sec),
    )

    rate_events: deque[float] = deque()
    try:
        while True:
            try:
                raw_text = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_idle_timeout_sec)
            except (asyncio.TimeoutError, WebSocketDisconnect):
                break

            if not allow_event(
                rate_events,
                now=monotonic(),
                window_seconds=settings.ws_rate_limit_window_sec,
                max_events=settings.ws_rate_limit_max_commands,
            ):
                await connection_manager.send(
                    context.connection_id,
                    error_frame(code="RATE_LIMITED", message="Command rate limit exceeded"),
                )
                continue

            try:
                command = parse_command(raw_text, max_bytes=settings.ws_max_command_bytes)
            except ProtocolError as exc:
                await connection_manager.send(context.connection_id, error_frame(code=exc.code, message=exc.message))
                continue

            if isinstance(command, PingCommand):
                await connection_manager.send(context.connection_id, pong_frame(ts=command.ts))
    finally:
        await connection_manager.unregister(context.connection_id, close_socket=True)
        logger.info("WebSocket session closed connection_id=%s user_id=%s", context.connection_id, user_id)

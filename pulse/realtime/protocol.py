from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

PROTOCOL_VERSION = 1


@dataclass(slots=True)
class ProtocolError(Exception):
    code: str
    message: str


class PingCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    op: Literal["ping"]
    ts: int | None = None


COMMANDS: dict[str, type[BaseModel]] = {"ping": PingCommand}


def parse_command(raw_text: str, *, max_bytes: int) -> BaseModel:
    if len(raw_text.encode("utf-8")) > max_bytes:
        raise ProtocolError(code="INVALID_COMMAND", message="Frame is too large")

    try:
        decoded = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(code="INVALID_COMMAND", message="Invalid JSON payload") from exc

    if not isinstance(decoded, dict):
        raise ProtocolError(code="INVALID_COMMAND", message="Command payload must be an object")

    model = COMMANDS.get(decoded.get("op"))
    if model is None:
        raise ProtocolError(code="INVALID_COMMAND", message="Unsupported command")

    try:
        return model.model_validate(decoded)
    except ValidationError as exc:
        raise ProtocolError(code="INVALID_COMMAND", message=str(exc.errors()[0]["msg"])) from exc


def welcome_frame(*, connection_id: str, user_id: str, heartbeat_sec: int) -> dict[str, object]:
    return {
        "type": "connection.welcome",
        "connection_id": connection_id,
        "user_id": user_id,
        "server_time": datetime.now(UTC).isoformat(),
        "heartbeat_sec": heartbeat_sec,
        "protocol_version": PROTOCOL_VERSION,
    }


def error_frame(*, code: str, message: str) -> dict[str, object]:
    return {"type": "error", "error": {"code": code, "message": message}}


def pong_frame(*, ts: int | None = None) -> dict[str, object]:
    payload: dict[str, object] = {"type": "pong"}
    if ts is not None:
        payload["ts"] = ts
    return payload


def event_frame(*, event_type: str, event_id: str, occurred_at: str, payload: dict[str, object]) -> dict[str, object]:
    return {
        "type": event_type,
        "event_id": event_id,
        "occurred_at": occurred_at,
        "payload": payload,
    }

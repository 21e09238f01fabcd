from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pulse.api.deps import get_current_user
from pulse.core.errors import success_response
from pulse.db.session import get_db
from pulse.models import User
from pulse.schemas.messages import DeleteMessageRequest, SendMessageRequest, SendMessageResponse, UnreadCountResponse
from pulse.services import message_service, realtime_service, user_hydration_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("/send")
def send_message(
    payload: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message = message_service.send_message(
        db,
        sender_id=current_user.id,
        recipient_id=payload.recipient_id,
        content_type=payload.type,
        text=payload.content,
        media=payload.media,
    )
    # The message is committed at this point; the push below is best effort.
    realtime_service.emit_new_message(db, message=message)

    users_by_id = user_hydration_service.profiles_by_id(db, [message.sender_id, message.recipient_id])
    body = SendMessageResponse(
        message=message_service.serialize_message(message, users_by_id),
        conversation_id=message.conversation_id,
    )
    return success_response(body.to_json(), status_code=status.HTTP_201_CREATED)


@router.get("/unread-count")
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    count = message_service.unread_count(db, user_id=current_user.id)
    return success_response(UnreadCountResponse(unread_count=count).to_json())


@router.put("/{message_id}/read")
def mark_read(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    message_service.mark_read(db, message_id=message_id, reader_id=current_user.id)
    return success_response({"ok": True})


@router.delete("/{message_id}")
def delete_message(
    message_id: str,
    payload: DeleteMessageRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    delete_for = payload.delete_for if payload is not None else "me"
    logger.info("Delete message endpoint hit user_id=%s message_id=%s scope=%s", current_user.id, message_id, delete_for)
    message = message_service.delete_message(
        db,
        message_id=message_id,
        user_id=current_user.id,
        delete_for=delete_for,
    )
    if delete_for == "everyone":
        realtime_service.emit_message_deleted(db, message=message, deleted_by=current_user.id)
    return success_response({"ok": True})

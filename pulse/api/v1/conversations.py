from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pulse.api.deps import PageParams, get_current_user, page_params
from pulse.core.errors import success_response
from pulse.db.session import get_db
from pulse.models import User
from pulse.schemas.base import Pagination
from pulse.schemas.conversations import (
    ConversationListResponse,
    ConversationMessagesResponse,
    ConversationResponse,
    DirectConversationCreateRequest,
)
from pulse.services import conversation_service, feed_service, message_service, user_hydration_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/conversations", tags=["conversations"])


def _conversation_response(db: Session, *, user_id: str, conversation) -> dict[str, object]:
    summary = feed_service.build_conversation_summary(db, requester_id=user_id, conversation=conversation)
    return ConversationResponse(conversation=summary).to_json()


@router.get("")
def list_conversations(
    paging: PageParams = Depends(page_params("conversation_page_default")),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("List conversations endpoint hit user_id=%s page=%s", current_user.id, paging.page)
    conversations = conversation_service.list_user_conversations(
        db,
        current_user.id,
        limit=paging.limit,
        page=paging.page,
    )
    body = ConversationListResponse(
        conversations=feed_service.build_conversation_summaries(
            db,
            requester_id=current_user.id,
            conversations=conversations,
        ),
        pagination=Pagination.for_page(page=paging.page, limit=paging.limit, returned=len(conversations)),
    )
    return success_response(body.to_json())


@router.post("")
def open_or_create_direct(
    payload: DirectConversationCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info(
        "Open/create direct conversation endpoint hit user_id=%s recipient_id=%s",
        current_user.id,
        payload.recipient_id,
    )
    conversation, created = conversation_service.get_or_create_direct_conversation(
        db,
        user_id=current_user.id,
        other_user_id=payload.recipient_id,
    )
    status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return success_response(
        _conversation_response(db, user_id=current_user.id, conversation=conversation),
        status_code=status_code,
    )


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = conversation_service.get_conversation_for_participant(
        db,
        conversation_id=conversation_id,
        user_id=current_user.id,
    )
    return success_response(_conversation_response(db, user_id=current_user.id, conversation=conversation))


@router.get("/{conversation_id}/messages")
def list_conversation_messages(
    conversation_id: str,
    paging: PageParams = Depends(page_params("message_page_default")),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("List messages endpoint hit user_id=%s conversation_id=%s", current_user.id, conversation_id)
    conversation, messages = message_service.list_conversation_messages(
        db,
        conversation_id=conversation_id,
        user_id=current_user.id,
        limit=paging.limit,
        page=paging.page,
    )
    user_ids = user_hydration_service.collect_user_ids(messages, "sender_id", "recipient_id")
    users_by_id = user_hydration_service.profiles_by_id(db, user_ids)
    body = ConversationMessagesResponse(
        messages=[message_service.serialize_message(message, users_by_id) for message in messages],
        conversation=feed_service.build_conversation_summary(
            db,
            requester_id=current_user.id,
            conversation=conversation,
        ),
        pagination=Pagination.for_page(page=paging.page, limit=paging.limit, returned=len(messages)),
    )
    return success_response(body.to_json())


@router.delete("/{conversation_id}/participants/me")
def leave_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    logger.info("Leave conversation endpoint hit user_id=%s conversation_id=%s", current_user.id, conversation_id)
    conversation_service.leave_conversation(db, conversation_id=conversation_id, user_id=current_user.id)
    return success_response({"ok": True})


@router.put("/{conversation_id}/archive")
def archive_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = conversation_service.archive_conversation(
        db,
        conversation_id=conversation_id,
        user_id=current_user.id,
    )
    return success_response(_conversation_response(db, user_id=current_user.id, conversation=conversation))


@router.delete("/{conversation_id}/archive")
def unarchive_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conversation = conversation_service.unarchive_conversation(
        db,
        conversation_id=conversation_id,
        user_id=current_user.id,
    )
    return success_response(_conversation_response(db, user_id=current_user.id, conversation=conversation))

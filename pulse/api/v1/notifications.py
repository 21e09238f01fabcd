from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pulse.api.deps import PageParams, get_current_user, page_params
from pulse.core.errors import success_response
from pulse.db.session import get_db
from pulse.models import User
from pulse.schemas.base import Pagination
from pulse.schemas.messages import UnreadCountResponse
from pulse.schemas.notifications import NotificationListResponse, NotificationRead
from pulse.services import notification_service, user_hydration_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    paging: PageParams = Depends(page_params("notification_page_default")),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = notification_service.list_notifications(db, user_id=current_user.id, limit=paging.limit, page=paging.page)
    senders = user_hydration_service.profiles_by_id(db, user_hydration_service.collect_user_ids(rows, "sender_id"))
    notifications = []
    for row in rows:
        item = NotificationRead.model_validate(row)
        item.sender = senders.get(row.sender_id)
        notifications.append(item)

    body = NotificationListResponse(
        notifications=notifications,
        unread_count=notification_service.unread_notification_count(db, user_id=current_user.id),
        pagination=Pagination.for_page(page=paging.page, limit=paging.limit, returned=len(rows)),
    )
    return success_response(body.to_json())


@router.get("/unread-count")
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    count = notification_service.unread_notification_count(db, user_id=current_user.id)
    return success_response(UnreadCountResponse(unread_count=count).to_json())


@router.put("/read-all")
def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updated = notification_service.mark_all_notifications_read(db, user_id=current_user.id)
    return success_response({"ok": True, "updated": updated})


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification_service.mark_notification_read(db, notification_id=notification_id, user_id=current_user.id)
    return success_response({"ok": True})


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notification_service.delete_notification(db, notification_id=notification_id, user_id=current_user.id)
    return success_response({"ok": True})

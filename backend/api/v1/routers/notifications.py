"""
Notifications Router - the caller's in-app notification feed.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.deps import get_current_caller, get_notifier
from core.security import Caller
from notifications.dispatcher import MAX_LIST_LIMIT, NotificationDispatcher

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    notification_id: UUID
    recipient_id: UUID
    category: str
    template_key: str
    title: str
    message: str
    data: dict | None
    is_read: bool
    created_at: datetime
    expires_at: datetime | None

    model_config = {"from_attributes": True}


@router.get("/", response_model=list[NotificationResponse])
async def list_notifications(
    category: str | None = None,
    is_read: bool | None = None,
    limit: int | None = Query(None, ge=1, le=MAX_LIST_LIMIT),
    caller: Caller = Depends(get_current_caller),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return await notifier.list_for_recipient(caller, caller.user_id, category, is_read, limit)


@router.get("/unread-count")
async def unread_count(
    caller: Caller = Depends(get_current_caller),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return {"unread": await notifier.unread_count(caller, caller.user_id)}


@router.post("/read-all")
async def mark_all_read(
    caller: Caller = Depends(get_current_caller),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return {"updated": await notifier.mark_all_read(caller, caller.user_id)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    caller: Caller = Depends(get_current_caller),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return await notifier.mark_read(caller, notification_id)


@router.delete("/expired")
async def purge_expired(
    caller: Caller = Depends(get_current_caller),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    return {"deleted": await notifier.purge_expired(caller)}

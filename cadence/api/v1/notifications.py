from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from cadence.api.deps import get_current_user, get_push_sender
from cadence.core.errors import success_response
from cadence.db.session import get_db
from cadence.models import User
from cadence.schemas.notifications import SendNotificationRequest
from cadence.services import notification_service
from cadence.services.push_service import PushSender

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_my_notifications(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notifications = notification_service.list_notifications(db, receiver_id=user.id)
    logger.debug("Listed notifications user_id=%s count=%s", user.id, len(notifications))
    return success_response([notification_service.serialize_notification(item) for item in notifications])


@router.patch("/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = notification_service.mark_read(db, notification_id=notification_id, receiver_id=user.id)
    return success_response(notification_service.serialize_notification(notification))


@router.post("/send")
def send_notification(
    payload: SendNotificationRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    push_sender: PushSender | None = Depends(get_push_sender),
):
    logger.info("Send notification endpoint hit sender_id=%s receiver_id=%s", user.id, payload.receiver_id)
    result = notification_service.send_single_notification(
        db,
        sender_id=user.id,
        receiver_id=payload.receiver_id,
        title=payload.title,
        body=payload.body,
        push_sender=push_sender,
    )
    return success_response(result, status_code=status.HTTP_201_CREATED)

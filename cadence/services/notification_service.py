from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from cadence.core.errors import APIError, not_found
from cadence.models import Notification, User
from cadence.services.push_service import PushDeliveryError, PushSender
from cadence.services.serialization import serialize_datetime

logger = logging.getLogger(__name__)


def serialize_notification(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.id,
        "receiverId": notification.receiver_id,
        "senderId": notification.sender_id,
        "title": notification.title,
        "body": notification.body,
        "read": notification.read,
        "createdAt": serialize_datetime(notification.created_at),
    }


def create_notification(
    db: Session,
    *,
    receiver_id: str,
    title: str,
    body: str,
    sender_id: str | None = None,
) -> Notification:
    notification = Notification(receiver_id=receiver_id, sender_id=sender_id, title=title, body=body, read=False)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info("Notification created notification_id=%s receiver_id=%s", notification.id, receiver_id)
    return notification


def list_notifications(db: Session, *, receiver_id: str) -> list[Notification]:
    return list(
        db.scalars(
            select(Notification)
            .where(Notification.receiver_id == receiver_id)
            .order_by(Notification.created_at.desc())
        ).all()
    )


def mark_read(db: Session, *, notification_id: str, receiver_id: str) -> Notification:
    notification = db.scalar(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.receiver_id == receiver_id,
            Notification.read.is_(False),
        )
    )
    if notification is None:
        logger.warning("Unread notification not found notification_id=%s", notification_id)
        raise not_found("notification_not_found", "No unread notification found")

    notification.read = True
    db.commit()
    return notification


def delete_read_before(db: Session, *, cutoff: datetime) -> int:
    result = db.execute(delete(Notification).where(Notification.read.is_(True), Notification.created_at < cutoff))
    db.commit()
    logger.info("Deleted read notifications count=%s cutoff=%s", result.rowcount, cutoff.isoformat())
    return result.rowcount


def retention_cutoff(days: int) -> datetime:
    return datetime.now(UTC) - timedelta(days=days)


def send_single_notification(
    db: Session,
    *,
    sender_id: str | None,
    receiver_id: str,
    title: str,
    body: str,
    push_sender: PushSender | None,
) -> dict[str, object]:
    """Persist a notification and push it to the receiver's device in the request path.

    Push is synchronous and not retried; the durable path is the notification queue.
    """
    receiver = db.get(User, receiver_id)
    if receiver is None:
        raise not_found("user_not_found", "User not found")

    notification = create_notification(db, receiver_id=receiver_id, sender_id=sender_id, title=title, body=body)
    payload: dict[str, object] = {"notification": serialize_notification(notification), "pushed": False}

    if not receiver.fcm_token or push_sender is None:
        logger.debug("Push skipped receiver_id=%s", receiver_id)
        return payload

    try:
        payload["pushMessageId"] = push_sender.send(token=receiver.fcm_token, title=title, body=body)
    except PushDeliveryError as exc:
        logger.warning("Push delivery failed receiver_id=%s code=%s", receiver_id, exc.code)
        if exc.code == "invalid-registration-token":
            raise APIError(status_code=400, code="invalid_fcm_token", message="Invalid FCM registration token") from exc
        if exc.code == "registration-token-not-registered":
            raise not_found("fcm_token_unregistered", "FCM token is no longer registered") from exc
        raise APIError(status_code=500, code="push_failed", message="Failed to send notification") from exc

    payload["pushed"] = True
    return payload

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from cadence.events import EventBus
from cadence.jobs.queue import Job, UnrecoverableJobError
from cadence.services.notification_service import create_notification
from cadence.services.user_service import get_user

logger = logging.getLogger(__name__)


class NotificationProcessor:
    """Persists the in-app notification, then announces it on the bus."""

    def __init__(self, session_factory: Callable[[], Session], *, bus: EventBus | None = None) -> None:
        self._session_factory = session_factory
        self._bus = bus

    def _persist(self, data: dict[str, object]) -> str:
        with self._session_factory() as db:
            if get_user(db, str(data["userId"])) is None:
                raise UnrecoverableJobError(f"Notification receiver not found user_id={data['userId']}")
            notification = create_notification(
                db,
                receiver_id=str(data["userId"]),
                sender_id=data.get("senderId"),
                title=str(data["title"]),
                body=str(data["body"]),
            )
            return notification.id

    async def __call__(self, job: Job) -> dict[str, object]:
        data = job.data
        if not data.get("userId") or not data.get("title"):
            raise UnrecoverableJobError("Notification job is missing userId or title")

        notification_id = await asyncio.to_thread(self._persist, data)
        extra = data.get("data") or {}
        if self._bus is not None:
            self._bus.emit(
                "notification.sent",
                {
                    "notificationId": notification_id,
                    "userId": data["userId"],
                    "type": extra.get("type", "general"),
                },
            )
        return {"success": True, "notificationId": notification_id}

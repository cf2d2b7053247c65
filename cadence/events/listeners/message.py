from __future__ import annotations

import logging

from cadence.events.bus import EventBus
from cadence.events.catalog import MessageSent
from cadence.events.listeners.base import ListenerContext
from cadence.services.user_service import get_user

logger = logging.getLogger(__name__)


def _sender_name(db, user_id: str) -> str | None:
    user = get_user(db, user_id)
    if user is None:
        return None
    return user.name or user.email


def register(bus: EventBus, ctx: ListenerContext) -> None:
    async def on_message_sent(payload: MessageSent) -> None:
        if payload.get("delivered", True):
            return
        sender = await ctx.read(_sender_name, payload["senderId"])
        if sender is None:
            logger.warning("Sender not found for message.sent sender_id=%s", payload["senderId"])
            return
        await ctx.queues.add_notification_job(
            user_id=payload["receiverId"],
            sender_id=payload["senderId"],
            title="New message",
            body=f"{sender} sent you a message",
            data={"type": "message", "roomId": payload["roomId"], "messageId": payload["messageId"]},
        )

    bus.on("message.sent", on_message_sent)

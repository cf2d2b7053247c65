from __future__ import annotations

import logging

from cadence.events.bus import EventBus
from cadence.events.catalog import PaymentCompleted, PaymentFailed
from cadence.events.listeners.base import ListenerContext
from cadence.jobs.queues import PAYMENT_EVENTS_QUEUE
from cadence.services.user_service import get_user

logger = logging.getLogger(__name__)


def register(bus: EventBus, ctx: ListenerContext) -> None:
    async def on_payment_completed(payload: PaymentCompleted) -> None:
        logger.info("Payment completed payment_id=%s user_id=%s", payload["paymentId"], payload["userId"])
        if await ctx.read(get_user, payload["userId"]) is None:
            logger.warning("User not found for payment.completed user_id=%s", payload["userId"])
            return
        await ctx.queues.add_event_job(PAYMENT_EVENTS_QUEUE, "payment.completed", dict(payload))

    async def on_payment_failed(payload: PaymentFailed) -> None:
        logger.warning("Payment failed user_id=%s reason=%s", payload["userId"], payload.get("reason"))
        if await ctx.read(get_user, payload["userId"]) is None:
            logger.warning("User not found for payment.failed user_id=%s", payload["userId"])
            return
        await ctx.queues.add_event_job(PAYMENT_EVENTS_QUEUE, "payment.failed", dict(payload))

    bus.on("payment.completed", on_payment_completed)
    bus.on("payment.failed", on_payment_failed)

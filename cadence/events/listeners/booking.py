from __future__ import annotations

import logging

from cadence.events.bus import EventBus
from cadence.events.listeners.base import ListenerContext
from cadence.jobs.queues import BOOKING_EVENTS_QUEUE
from cadence.services.booking_service import booking_summary

logger = logging.getLogger(__name__)

BOOKING_EVENTS = ("booking.created", "booking.updated", "booking.cancelled")


def register(bus: EventBus, ctx: ListenerContext) -> None:
    def forward(event_name: str):
        async def listener(payload: dict) -> None:
            booking_id = payload["bookingId"]
            logger.info("Booking event event=%s booking_id=%s", event_name, booking_id)
            if await ctx.read(booking_summary, booking_id) is None:
                logger.warning("Booking not found event=%s booking_id=%s", event_name, booking_id)
                return
            await ctx.queues.add_event_job(BOOKING_EVENTS_QUEUE, event_name, dict(payload))

        listener.__qualname__ = f"forward_{event_name.replace('.', '_')}"
        return listener

    for event_name in BOOKING_EVENTS:
        bus.on(event_name, forward(event_name))

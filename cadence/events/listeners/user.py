from __future__ import annotations

import logging

from cadence.events.bus import EventBus
from cadence.events.catalog import UserCreated, UserDeleted, UserUpdated
from cadence.events.listeners.base import ListenerContext
from cadence.jobs.queues import USER_EVENTS_QUEUE
from cadence.services.user_service import get_user

logger = logging.getLogger(__name__)


def register(bus: EventBus, ctx: ListenerContext) -> None:
    async def on_user_created(payload: UserCreated) -> None:
        logger.info("User created user_id=%s", payload["userId"])
        if await ctx.read(get_user, payload["userId"]) is None:
            logger.warning("User not found for user.created user_id=%s", payload["userId"])
            return
        await ctx.queues.add_event_job(USER_EVENTS_QUEUE, "user.created", dict(payload))

    def on_user_updated(payload: UserUpdated) -> None:
        logger.info("User updated user_id=%s fields=%s", payload["userId"], ",".join(sorted(payload.get("changes", {}))))

    async def on_user_deleted(payload: UserDeleted) -> None:
        # The row is already gone; the payload carries the address to write to.
        logger.info("User deleted user_id=%s", payload["userId"])
        await ctx.queues.add_event_job(USER_EVENTS_QUEUE, "user.deleted", dict(payload))

    bus.on("user.created", on_user_created)
    bus.on("user.updated", on_user_updated)
    bus.on("user.deleted", on_user_deleted)

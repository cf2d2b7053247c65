from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.orm import Session

from cadence.events.bus import EventBus
from cadence.events.listeners import booking, message, payment, review, user
from cadence.events.listeners.base import ListenerContext
from cadence.jobs.queues import JobQueues

logger = logging.getLogger(__name__)


def register_all_listeners(bus: EventBus, *, queues: JobQueues, session_factory: Callable[[], Session]) -> None:
    """Wire the domain events to their job producers. Call once at startup."""
    ctx = ListenerContext(queues=queues, session_factory=session_factory)
    for module in (user, booking, payment, review, message):
        module.register(bus, ctx)
    logger.info("Event listeners registered")


__all__ = ["ListenerContext", "register_all_listeners"]

"""
Job worker runner.

Reads the worker name from CLI args or the WORKER_NAME environment variable
(``all`` runs every worker) and processes jobs until interrupted.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Callable

from arq import create_pool
from sqlalchemy.orm import Session

from cadence.core.logging import configure_logging
from cadence.core.settings import Settings, get_settings
from cadence.db.session import init_db, open_session
from cadence.events import EventBus
from cadence.jobs.queues import (
    BACKGROUND_QUEUE,
    BOOKING_EVENTS_QUEUE,
    EMAIL_QUEUE,
    NOTIFICATION_QUEUE,
    PAYMENT_EVENTS_QUEUE,
    USER_EVENTS_QUEUE,
    JobQueues,
    redis_settings,
)
from cadence.jobs.worker import RateLimit, Worker
from cadence.jobs.workers.background import (
    CLEANUP_NOTIFICATIONS,
    BackgroundProcessor,
    cleanup_notifications,
    cleanup_notifications_cron,
)
from cadence.jobs.workers.email import EmailProcessor
from cadence.jobs.workers.events import BookingEventsProcessor, PaymentEventsProcessor, UserEventsProcessor
from cadence.jobs.workers.notification import NotificationProcessor
from cadence.services.email_service import EmailSender, SmtpEmailSender

logger = logging.getLogger(__name__)

WORKER_NAMES: tuple[str, ...] = (
    EMAIL_QUEUE,
    NOTIFICATION_QUEUE,
    USER_EVENTS_QUEUE,
    BOOKING_EVENTS_QUEUE,
    PAYMENT_EVENTS_QUEUE,
    BACKGROUND_QUEUE,
)

EVENTS_RATE_LIMIT = RateLimit(max_jobs=10, duration_sec=1.0)


def build_workers(
    settings: Settings,
    queues: JobQueues,
    *,
    session_factory: Callable[[], Session],
    bus: EventBus | None = None,
    email_sender: EmailSender | None = None,
    names: tuple[str, ...] = WORKER_NAMES,
) -> list[Worker]:
    unknown = set(names) - set(WORKER_NAMES)
    if unknown:
        raise ValueError(f"Unknown worker '{sorted(unknown)[0]}'. Available workers: {', '.join(WORKER_NAMES)}")

    options = {
        "poll_delay_sec": settings.worker_poll_interval_ms / 1000.0,
        "job_timeout_sec": settings.worker_job_timeout_sec,
    }
    base_url = settings.frontend_base_url

    def email() -> Worker:
        sender = email_sender or SmtpEmailSender.from_settings(settings)
        return Worker(queues.get(EMAIL_QUEUE), EmailProcessor(sender), concurrency=5, **options)

    def notification() -> Worker:
        processor = NotificationProcessor(session_factory, bus=bus)
        return Worker(queues.get(NOTIFICATION_QUEUE), processor, concurrency=10, **options)

    def events(queue_name: str, processor_cls: type) -> Callable[[], Worker]:
        def build() -> Worker:
            processor = processor_cls(queues, session_factory, base_url=base_url)
            return Worker(queues.get(queue_name), processor, concurrency=5, limiter=EVENTS_RATE_LIMIT, **options)

        return build

    def background() -> Worker:
        processor = BackgroundProcessor({CLEANUP_NOTIFICATIONS: cleanup_notifications(session_factory)})
        schedule = cleanup_notifications_cron(
            queues,
            hour=settings.cleanup_notifications_hour,
            older_than_days=settings.cleanup_notifications_older_than_days,
        )
        return Worker(queues.get(BACKGROUND_QUEUE), processor, concurrency=1, cron_jobs=[schedule], **options)

    factories: dict[str, Callable[[], Worker]] = {
        EMAIL_QUEUE: email,
        NOTIFICATION_QUEUE: notification,
        USER_EVENTS_QUEUE: events(USER_EVENTS_QUEUE, UserEventsProcessor),
        BOOKING_EVENTS_QUEUE: events(BOOKING_EVENTS_QUEUE, BookingEventsProcessor),
        PAYMENT_EVENTS_QUEUE: events(PAYMENT_EVENTS_QUEUE, PaymentEventsProcessor),
        BACKGROUND_QUEUE: background,
    }
    return [factories[name]() for name in names]


def _resolve_worker_names(argv: list[str]) -> tuple[str, ...]:
    """Pick the target worker from CLI args or WORKER_NAME env variable."""
    raw = argv[1] if len(argv) > 1 else os.getenv("WORKER_NAME", "all")
    name = raw.strip().lower()
    if name == "all":
        return WORKER_NAMES
    return (name,)


async def run_workers(names: tuple[str, ...]) -> None:
    settings = get_settings()
    init_db()
    queues = JobQueues(await create_pool(redis_settings(settings)), prefix=settings.queue_prefix)
    workers = build_workers(settings, queues, session_factory=open_session, names=names)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("Starting workers names=%s", ",".join(worker.name for worker in workers))
    try:
        for worker in workers:
            await worker.start()
        await stop_event.wait()
    finally:
        logger.info("Stopping workers")
        for worker in workers:
            await worker.stop()
        await queues.close()


def main() -> None:
    """CLI entrypoint."""
    settings = get_settings()
    configure_logging(debug=settings.debug, process="worker")
    asyncio.run(run_workers(_resolve_worker_names(sys.argv)))


if __name__ == "__main__":
    main()

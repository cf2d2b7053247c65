from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from arq.cron import CronJob, cron
from sqlalchemy.orm import Session

from cadence.jobs.queue import Job, UnrecoverableJobError
from cadence.jobs.queues import JobQueues
from cadence.services.notification_service import delete_read_before, retention_cutoff

logger = logging.getLogger(__name__)

BackgroundHandler = Callable[[dict[str, Any]], Awaitable[object]]

CLEANUP_NOTIFICATIONS = "cleanup-notifications"


def cleanup_notifications(session_factory: Callable[[], Session]) -> BackgroundHandler:
    def _delete(days: int) -> int:
        with session_factory() as db:
            return delete_read_before(db, cutoff=retention_cutoff(days))

    async def handler(data: dict[str, Any]) -> object:
        days = int(data.get("olderThanDays", 30))
        deleted = await asyncio.to_thread(_delete, days)
        return {"deleted": deleted, "olderThanDays": days}

    return handler


def cleanup_notifications_cron(queues: JobQueues, *, hour: int, older_than_days: int) -> CronJob:
    """Daily schedule that enqueues the cleanup job on the background queue."""

    async def enqueue_cleanup(ctx: dict[str, Any]) -> str:
        job = await queues.add_background_job(CLEANUP_NOTIFICATIONS, {"olderThanDays": older_than_days})
        logger.info("Scheduled notification cleanup job_id=%s older_than_days=%s", job.id, older_than_days)
        return job.id

    return cron(enqueue_cleanup, name=f"cron:{CLEANUP_NOTIFICATIONS}", hour=hour, minute=0)


class BackgroundProcessor:
    """Routes background jobs to a handler registered under the job name."""

    def __init__(self, handlers: dict[str, BackgroundHandler]) -> None:
        self._handlers = dict(handlers)

    def register(self, name: str, handler: BackgroundHandler) -> None:
        self._handlers[name] = handler

    async def __call__(self, job: Job) -> object:
        handler = self._handlers.get(job.name)
        if handler is None:
            raise UnrecoverableJobError(f"No handler for background job {job.name}")
        logger.info("Running background job job_id=%s name=%s", job.id, job.name)
        return await handler(job.data)

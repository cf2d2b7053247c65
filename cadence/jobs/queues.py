from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterator

from arq.connections import ArqRedis, RedisSettings
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from cadence.core.settings import Settings
from cadence.jobs.queue import Backoff, Job, JobOptions, JobQueue

logger = logging.getLogger(__name__)

EMAIL_QUEUE = "email"
NOTIFICATION_QUEUE = "notification"
IMAGE_PROCESSING_QUEUE = "image-processing"
REPORT_QUEUE = "report"
BACKGROUND_QUEUE = "background-jobs"
USER_EVENTS_QUEUE = "user-events"
BOOKING_EVENTS_QUEUE = "booking-events"
PAYMENT_EVENTS_QUEUE = "payment-events"

_EVENT_OPTIONS = JobOptions(attempts=3, backoff=Backoff("exponential", 1000))

DEFAULT_OPTIONS: dict[str, JobOptions] = {
    EMAIL_QUEUE: JobOptions(attempts=3, backoff=Backoff("exponential", 2000), remove_on_complete=100, remove_on_fail=50),
    NOTIFICATION_QUEUE: JobOptions(attempts=3, backoff=Backoff("exponential", 1000)),
    IMAGE_PROCESSING_QUEUE: JobOptions(attempts=2, backoff=Backoff("fixed", 5000), remove_on_complete=50, remove_on_fail=25),
    REPORT_QUEUE: JobOptions(attempts=2, backoff=Backoff("fixed", 10000), remove_on_complete=50, remove_on_fail=25),
    BACKGROUND_QUEUE: JobOptions(attempts=3, backoff=Backoff("exponential", 2000)),
    USER_EVENTS_QUEUE: _EVENT_OPTIONS,
    BOOKING_EVENTS_QUEUE: _EVENT_OPTIONS,
    PAYMENT_EVENTS_QUEUE: _EVENT_OPTIONS,
}

QUEUE_NAMES: tuple[str, ...] = tuple(DEFAULT_OPTIONS)


def redis_settings(settings: Settings) -> RedisSettings:
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        database=settings.redis_db,
        password=settings.redis_password,
        conn_timeout=10,
        conn_retry_delay=1,
    )


def create_redis_client(settings: Settings) -> ArqRedis:
    """Lazy arq client for the API process; it connects on first use, unlike ``arq.create_pool``."""
    pool = ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        max_connections=20,
        retry_on_timeout=True,
        socket_connect_timeout=10,
        health_check_interval=30,
    )
    logger.info("Redis client configured host=%s port=%s db=%s", settings.redis_host, settings.redis_port, settings.redis_db)
    return ArqRedis(connection_pool=pool)


def _with(base: JobOptions, **overrides: Any) -> JobOptions:
    changes = {key: value for key, value in overrides.items() if value is not None}
    return replace(base, **changes) if changes else base


class JobQueues:
    """The fixed set of queues shared by the API process and the workers."""

    def __init__(self, client: ArqRedis, *, prefix: str = "cadence") -> None:
        self._client = client
        self._queues = {
            name: JobQueue(name, client, prefix=prefix, default_options=options)
            for name, options in DEFAULT_OPTIONS.items()
        }

    def get(self, name: str) -> JobQueue:
        try:
            return self._queues[name]
        except KeyError:
            raise ValueError(f"Unknown queue: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._queues

    def __iter__(self) -> Iterator[JobQueue]:
        return iter(self._queues.values())

    async def _add(self, queue_name: str, job_name: str, data: dict[str, Any], **overrides: Any) -> Job:
        queue = self.get(queue_name)
        try:
            return await queue.add(job_name, data, _with(queue.default_options, **overrides))
        except Exception:
            logger.exception("Failed to add job queue=%s name=%s", queue_name, job_name)
            raise

    async def add_email_job(
        self,
        *,
        to: str,
        subject: str,
        html: str,
        from_email: str | None = None,
        delay_ms: int | None = None,
        priority: int | None = None,
        attempts: int | None = None,
    ) -> Job:
        data = {"to": to, "subject": subject, "html": html}
        if from_email:
            data["from"] = from_email
        return await self._add(
            EMAIL_QUEUE,
            "send-email",
            data,
            delay_ms=delay_ms,
            priority=priority,
            attempts=attempts,
        )

    async def add_notification_job(
        self,
        *,
        user_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        sender_id: str | None = None,
        delay_ms: int | None = None,
        priority: int | None = None,
    ) -> Job:
        payload = {"userId": user_id, "title": title, "body": body, "data": data or {}, "senderId": sender_id}
        return await self._add(NOTIFICATION_QUEUE, "send-notification", payload, delay_ms=delay_ms, priority=priority)

    async def add_image_processing_job(
        self,
        *,
        image_url: str,
        user_id: str,
        operations: list[dict[str, Any]],
        priority: int | None = None,
    ) -> Job:
        data = {"imageUrl": image_url, "userId": user_id, "operations": operations}
        return await self._add(IMAGE_PROCESSING_QUEUE, "process-image", data, priority=priority)

    async def add_report_job(
        self,
        *,
        user_id: str,
        report_type: str,
        filters: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> Job:
        data = {"userId": user_id, "reportType": report_type, "filters": filters or {}}
        return await self._add(REPORT_QUEUE, "generate-report", data, priority=priority)

    async def add_background_job(self, name: str, data: dict[str, Any], *, delay_ms: int | None = None) -> Job:
        return await self._add(BACKGROUND_QUEUE, name, data, delay_ms=delay_ms)

    async def add_event_job(self, queue_name: str, event_name: str, payload: dict[str, Any]) -> Job:
        if queue_name not in (USER_EVENTS_QUEUE, BOOKING_EVENTS_QUEUE, PAYMENT_EVENTS_QUEUE):
            raise ValueError(f"Not an event queue: {queue_name}")
        return await self._add(queue_name, event_name, payload)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed error=%s", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()

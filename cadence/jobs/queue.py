"""Durable job queue on Redis, backed by arq.

Each queue is an arq queue (a sorted set named ``{prefix}:queue:{name}``,
scored by the epoch ms a job becomes runnable). Job payloads, results,
retry counters and in-progress locks use arq's own keys. This module adds
what arq does not keep:

- ``{prefix}:job-id``                  counter used for job ids
- ``{prefix}:{queue}:completed|failed`` lists of finished ids, newest first,
  trimmed to the retention bound; evicted ids lose their stored result

Priority is folded into the score: a ready job is backdated by one
``PRIORITY_STEP`` per level below ``MAX_PRIORITY``, so lower numbers are
picked first among jobs that are due. Delivery is at-least-once: a job whose
worker dies keeps its place in the sorted set and runs again once its
in-progress key expires. Nothing here deduplicates side effects.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Literal

from arq.connections import ArqRedis
from arq.constants import in_progress_key_prefix, result_key_prefix, retry_key_prefix
from arq.jobs import Job as ArqJob
from arq.jobs import JobDef, JobResult, JobStatus
from arq.utils import timestamp_ms

logger = logging.getLogger(__name__)

JOB_FUNCTION = "process"
MAX_ATTEMPTS = 10
MAX_PRIORITY = 10
PRIORITY_STEP = timedelta(hours=1)
JOB_TTL = timedelta(days=1)


class JobState(StrEnum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_STATES = {
    JobStatus.queued: JobState.WAITING,
    JobStatus.deferred: JobState.DELAYED,
    JobStatus.in_progress: JobState.ACTIVE,
}


class UnrecoverableJobError(Exception):
    """Raised by a processor to fail a job without using its remaining attempts."""


@dataclass(frozen=True, slots=True)
class Backoff:
    type: Literal["exponential", "fixed"] = "exponential"
    delay_ms: int = 1000

    def delay_for(self, attempts_made: int) -> int:
        if self.type == "fixed":
            return self.delay_ms
        return self.delay_ms * 2 ** max(0, attempts_made - 1)


@dataclass(frozen=True, slots=True)
class JobOptions:
    attempts: int = 1
    backoff: Backoff | None = None
    delay_ms: int = 0
    priority: int = 1
    remove_on_complete: int = 100
    remove_on_fail: int = 50

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> JobOptions:
        decoded = dict(raw)
        backoff = decoded.pop("backoff", None)
        return cls(backoff=Backoff(**backoff) if backoff else None, **decoded)

    def validate(self) -> None:
        if not 1 <= self.attempts <= MAX_ATTEMPTS:
            raise ValueError(f"attempts must be between 1 and {MAX_ATTEMPTS}")
        if not 0 <= self.priority <= MAX_PRIORITY:
            raise ValueError(f"priority must be between 0 and {MAX_PRIORITY}")
        if self.delay_ms < 0:
            raise ValueError("delay_ms must not be negative")
        if self.remove_on_complete < 1 or self.remove_on_fail < 1:
            raise ValueError("retention must keep at least one job")


@dataclass(slots=True)
class Job:
    id: str
    queue: str
    name: str
    data: dict[str, Any]
    options: JobOptions
    state: JobState
    created_at: int
    attempts_made: int = 0
    failed_reason: str | None = None
    return_value: Any = None
    processed_at: int | None = None
    finished_at: int | None = None

    def to_public(self) -> dict[str, object]:
        return {
            "id": self.id,
            "queue": self.queue,
            "name": self.name,
            "state": self.state.value,
            "data": self.data,
            "attempts": self.options.attempts,
            "attempts_made": self.attempts_made,
            "failed_reason": self.failed_reason,
            "return_value": self.return_value,
            "created_at": self.created_at / 1000,
            "processed_at": self.processed_at / 1000 if self.processed_at is not None else None,
            "finished_at": self.finished_at / 1000 if self.finished_at is not None else None,
        }


def _ms(value: datetime | None) -> int | None:
    return int(value.timestamp() * 1000) if value is not None else None


def _decode(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


class JobQueue:
    def __init__(
        self,
        name: str,
        redis: ArqRedis,
        *,
        prefix: str = "cadence",
        default_options: JobOptions | None = None,
    ) -> None:
        self.name = name
        self.redis = redis
        self.queue_key = f"{prefix}:queue:{name}"
        self._id_key = f"{prefix}:job-id"
        self._finished_keys = {
            JobState.COMPLETED: f"{prefix}:{name}:completed",
            JobState.FAILED: f"{prefix}:{name}:failed",
        }
        self.default_options = default_options or JobOptions()

    async def add(self, name: str, data: dict[str, Any], options: JobOptions | None = None) -> Job:
        opts = options or self.default_options
        opts.validate()

        job_id = str(await self.redis.incr(self._id_key))
        if opts.delay_ms > 0:
            schedule: dict[str, Any] = {"_defer_by": timedelta(milliseconds=opts.delay_ms)}
            state = JobState.DELAYED
        else:
            backdate = PRIORITY_STEP * (MAX_PRIORITY - opts.priority)
            schedule = {"_defer_until": datetime.now(timezone.utc) - backdate}
            state = JobState.WAITING

        queued = await self.redis.enqueue_job(
            JOB_FUNCTION,
            name,
            data,
            opts.to_dict(),
            _job_id=job_id,
            _queue_name=self.queue_key,
            _expires=JOB_TTL + timedelta(milliseconds=opts.delay_ms),
            **schedule,
        )
        if queued is None:
            raise RuntimeError(f"Job id {job_id} is already taken")

        logger.info("Job added queue=%s job_id=%s name=%s state=%s", self.name, job_id, name, state.value)
        return Job(
            id=job_id,
            queue=self.name,
            name=name,
            data=data,
            options=opts,
            state=state,
            created_at=timestamp_ms(),
        )

    def _build(self, job_id: str, info: JobDef, state: JobState, attempts_made: int) -> Job | None:
        if info.function != JOB_FUNCTION or len(info.args) != 3:
            return None
        name, data, options = info.args
        job = Job(
            id=job_id,
            queue=self.name,
            name=name,
            data=data,
            options=JobOptions.from_dict(options),
            state=state,
            created_at=_ms(info.enqueue_time) or 0,
            attempts_made=attempts_made,
        )
        if isinstance(info, JobResult):
            job.processed_at = _ms(info.start_time)
            job.finished_at = _ms(info.finish_time)
            if info.success:
                job.return_value = info.result
            else:
                job.failed_reason = str(info.result) or type(info.result).__name__
        return job

    async def get_job(self, job_id: str) -> Job | None:
        arq_job = ArqJob(job_id, self.redis, _queue_name=self.queue_key)
        info = await arq_job.info()
        if info is None:
            return None
        if isinstance(info, JobResult):
            if info.queue_name != self.queue_key:
                return None
            state = JobState.COMPLETED if info.success else JobState.FAILED
            return self._build(job_id, info, state, info.job_try)
        if info.score is None:
            return None

        state = _STATUS_STATES.get(await arq_job.status())
        if state is None:
            return None
        tries = await self.redis.get(retry_key_prefix + job_id)
        return self._build(job_id, info, state, int(tries) if tries else 0)

    async def get_state(self, job_id: str) -> JobState | None:
        job = await self.get_job(job_id)
        return job.state if job is not None else None

    async def _split_due(self) -> tuple[list[str], list[str]]:
        """Ready ids of this queue, split into (waiting, active)."""
        due = [_decode(raw) for raw in await self.redis.zrangebyscore(self.queue_key, "-inf", timestamp_ms())]
        if not due:
            return [], []
        async with self.redis.pipeline(transaction=False) as pipe:
            for job_id in due:
                pipe.exists(in_progress_key_prefix + job_id)
            running = await pipe.execute()
        waiting = [job_id for job_id, flag in zip(due, running) if not flag]
        active = [job_id for job_id, flag in zip(due, running) if flag]
        return waiting, active

    async def get_counts(self) -> dict[str, int]:
        waiting, active = await self._split_due()
        async with self.redis.pipeline(transaction=False) as pipe:
            pipe.zcount(self.queue_key, f"({timestamp_ms()}", "+inf")
            pipe.llen(self._finished_keys[JobState.COMPLETED])
            pipe.llen(self._finished_keys[JobState.FAILED])
            delayed, completed, failed = await pipe.execute()
        return {
            JobState.WAITING.value: len(waiting),
            JobState.DELAYED.value: delayed,
            JobState.ACTIVE.value: len(active),
            JobState.COMPLETED.value: completed,
            JobState.FAILED.value: failed,
        }

    async def list_job_ids(self, state: JobState) -> list[str]:
        match state:
            case JobState.WAITING:
                return (await self._split_due())[0]
            case JobState.ACTIVE:
                return (await self._split_due())[1]
            case JobState.DELAYED:
                raw = await self.redis.zrangebyscore(self.queue_key, f"({timestamp_ms()}", "+inf")
            case _:
                raw = await self.redis.lrange(self._finished_keys[state], 0, -1)
        return [_decode(item) for item in raw]

    async def list_jobs(self, state: JobState) -> list[Job]:
        jobs = []
        for job_id in await self.list_job_ids(state):
            job = await self.get_job(job_id)
            if job is not None:
                jobs.append(job)
        return jobs

    async def record_finished(self, job_id: str, state: JobState, keep: int) -> None:
        """Push a settled id onto its retention list and drop results that fall off the end."""
        list_key = self._finished_keys[state]
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(list_key, job_id)
            pipe.lrange(list_key, keep, -1)
            pipe.ltrim(list_key, 0, keep - 1)
            _, evicted, _ = await pipe.execute()
        if evicted:
            await self.redis.delete(*(result_key_prefix + _decode(stale) for stale in evicted))
            logger.debug("Trimmed finished jobs queue=%s state=%s removed=%s", self.name, state.value, len(evicted))

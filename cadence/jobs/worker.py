from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from arq import Retry
from arq.cron import CronJob
from arq.utils import timestamp_ms
from arq.worker import Worker as ArqWorker
from arq.worker import func

from cadence.core.rate_limit import InMemoryRateLimiter
from cadence.jobs.queue import JOB_FUNCTION, MAX_ATTEMPTS, Job, JobOptions, JobQueue, JobState, UnrecoverableJobError

logger = logging.getLogger(__name__)

Processor = Callable[[Job], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RateLimit:
    max_jobs: int
    duration_sec: float


class Worker:
    """Runs jobs from one queue through ``processor`` on an arq worker.

    At most ``concurrency`` jobs run at once (arq's ``max_jobs``). With a rate
    limit, at most ``max_jobs`` jobs start in any ``duration_sec`` window.
    Failed attempts are retried through arq's ``Retry`` with the job's backoff
    until its attempts are used up.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        *,
        concurrency: int = 1,
        limiter: RateLimit | None = None,
        poll_delay_sec: float = 0.5,
        job_timeout_sec: float = 300.0,
        cron_jobs: Sequence[CronJob] = (),
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self._processor = processor
        self._concurrency = concurrency
        self._poll_delay_sec = poll_delay_sec
        self._job_timeout_sec = job_timeout_sec
        self._cron_jobs = list(cron_jobs)
        self._limiter = (
            InMemoryRateLimiter(window_seconds=limiter.duration_sec, max_requests=limiter.max_jobs)
            if limiter is not None
            else None
        )
        self._arq: ArqWorker | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self.queue.name

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def build(self, *, burst: bool = False) -> ArqWorker:
        """The arq worker for this queue; must be called with a running event loop."""
        return ArqWorker(
            functions=[func(self._execute, name=JOB_FUNCTION, max_tries=MAX_ATTEMPTS + 1)],
            queue_name=self.queue.queue_key,
            redis_pool=self.queue.redis,
            cron_jobs=self._cron_jobs or None,
            burst=burst,
            max_jobs=self._concurrency,
            poll_delay=self._poll_delay_sec,
            # The processor gets job_timeout_sec; the margin lets a timed out attempt be retried.
            job_timeout=self._job_timeout_sec + 5,
            keep_result_forever=True,
            handle_signals=False,
            health_check_key=f"{self.queue.queue_key}:health-check",
        )

    async def start(self) -> None:
        if self._task is not None:
            return
        self._arq = self.build()
        self._task = asyncio.create_task(self._arq.main(), name=f"worker:{self.name}")
        logger.info("Worker started queue=%s concurrency=%s", self.name, self._concurrency)

    async def stop(self) -> None:
        """Stop picking up jobs and wait for the running ones to settle."""
        if self._task is None or self._arq is None:
            return
        task, arq_worker = self._task, self._arq
        self._task = None
        self._arq = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Worker crashed queue=%s", self.name)
        if arq_worker.tasks:
            await asyncio.gather(*arq_worker.tasks.values(), return_exceptions=True)
        await self.queue.redis.delete(arq_worker.health_check_key)
        logger.info("Worker stopped queue=%s", self.name)

    async def run_burst(self) -> dict[str, int]:
        """Run until the queue is empty, retries included; returns arq's job counters."""
        arq_worker = self.build(burst=True)
        try:
            await arq_worker.main()
        finally:
            await self.queue.redis.delete(arq_worker.health_check_key)
        return {
            "complete": arq_worker.jobs_complete,
            "failed": arq_worker.jobs_failed,
            "retried": arq_worker.jobs_retried,
        }

    async def _wait_for_rate_limit(self) -> None:
        if self._limiter is None:
            return
        while not self._limiter.hit(self.name):
            wait = self._limiter.retry_after(self.name)
            logger.debug("Worker rate limited queue=%s retry_after=%.3f", self.name, wait)
            await asyncio.sleep(max(wait, 0.001))

    async def _execute(self, ctx: dict[str, Any], name: str, data: dict[str, Any], options: dict[str, Any]) -> Any:
        opts = JobOptions.from_dict(options)
        attempt = ctx["job_try"]
        job = Job(
            id=ctx["job_id"],
            queue=self.name,
            name=name,
            data=data,
            options=opts,
            state=JobState.ACTIVE,
            created_at=int(ctx["enqueue_time"].timestamp() * 1000),
            attempts_made=attempt,
            processed_at=timestamp_ms(),
        )
        if attempt > opts.attempts:
            # Only reachable when a worker died mid-attempt and the job was redelivered.
            await self.queue.record_finished(job.id, JobState.FAILED, opts.remove_on_fail)
            raise UnrecoverableJobError("job stalled and attempts are exhausted")

        await self._wait_for_rate_limit()
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._processor(job), self._job_timeout_sec)
        except Exception as exc:
            if isinstance(exc, UnrecoverableJobError) or attempt >= opts.attempts:
                await self.queue.record_finished(job.id, JobState.FAILED, opts.remove_on_fail)
                logger.error(
                    "Job failed queue=%s job_id=%s name=%s attempt=%s/%s reason=%s",
                    self.name,
                    job.id,
                    name,
                    attempt,
                    opts.attempts,
                    exc,
                )
                raise
            delay_ms = opts.backoff.delay_for(attempt) if opts.backoff else 0
            logger.warning(
                "Job attempt failed queue=%s job_id=%s name=%s attempt=%s/%s retry_in_ms=%s reason=%s",
                self.name,
                job.id,
                name,
                attempt,
                opts.attempts,
                delay_ms,
                exc,
            )
            raise Retry(defer=delay_ms / 1000) from exc

        await self.queue.record_finished(job.id, JobState.COMPLETED, opts.remove_on_complete)
        logger.info(
            "Job completed queue=%s job_id=%s name=%s duration_ms=%.1f",
            self.name,
            job.id,
            name,
            (time.perf_counter() - started) * 1000,
        )
        return result

from cadence.jobs.queue import Backoff, Job, JobOptions, JobQueue, JobState, UnrecoverableJobError
from cadence.jobs.queues import QUEUE_NAMES, JobQueues, create_redis_client
from cadence.jobs.worker import RateLimit, Worker

__all__ = [
    "Backoff",
    "Job",
    "JobOptions",
    "JobQueue",
    "JobQueues",
    "JobState",
    "QUEUE_NAMES",
    "RateLimit",
    "UnrecoverableJobError",
    "Worker",
    "create_redis_client",
]

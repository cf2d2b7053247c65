from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from cadence.api.deps import get_job_queues, require_admin
from cadence.core.errors import not_found, success_response
from cadence.jobs import JobQueue, JobQueues
from cadence.schemas.jobs import JobRead, QueueCounts

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_admin)])


def _queue(queues: JobQueues, name: str) -> JobQueue:
    if name not in queues:
        raise not_found("queue_not_found", f"Unknown queue: {name}")
    return queues.get(name)


@router.get("/{queue_name}")
async def queue_counts(queue_name: str, queues: JobQueues = Depends(get_job_queues)):
    queue = _queue(queues, queue_name)
    counts = await queue.get_counts()
    return success_response(QueueCounts(queue=queue.name, counts=counts).model_dump(mode="json"))


@router.get("/{queue_name}/{job_id}")
async def job_status(queue_name: str, job_id: str, queues: JobQueues = Depends(get_job_queues)):
    queue = _queue(queues, queue_name)
    job = await queue.get_job(job_id)
    if job is None:
        logger.debug("Job not found queue=%s job_id=%s", queue_name, job_id)
        raise not_found("job_not_found", "Job not found")
    return success_response(JobRead.model_validate(job.to_public()).model_dump(mode="json"))

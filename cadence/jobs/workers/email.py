from __future__ import annotations

import logging

from cadence.jobs.queue import Job, UnrecoverableJobError
from cadence.services.email_service import EmailSender

logger = logging.getLogger(__name__)


class EmailProcessor:
    def __init__(self, sender: EmailSender) -> None:
        self._sender = sender

    async def __call__(self, job: Job) -> dict[str, object]:
        data = job.data
        missing = [key for key in ("to", "subject", "html") if not data.get(key)]
        if missing:
            raise UnrecoverableJobError(f"Email job is missing {', '.join(missing)}")

        logger.debug("Sending email job_id=%s to=%s", job.id, data["to"])
        message_id = await self._sender.send(
            to=data["to"],
            subject=data["subject"],
            html=data["html"],
            from_email=data.get("from"),
        )
        return {"success": True, "messageId": message_id}

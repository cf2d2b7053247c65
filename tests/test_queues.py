from __future__ import annotations

import asyncio

import pytest

from cadence.jobs import JobState
from cadence.jobs.queues import QUEUE_NAMES


def test_queue_set_is_fixed(queues):
    assert [queue.name for queue in queues] == list(QUEUE_NAMES)
    assert "report" in queues
    assert "reports" not in queues
    with pytest.raises(ValueError, match="Unknown queue: reports"):
        queues.get("reports")


def test_email_job_carries_sender_override(queues):
    async def scenario():
        plain = await queues.add_email_job(to="a@example.com", subject="Hi", html="<p>Hi</p>")
        custom = await queues.add_email_job(
            to="b@example.com", subject="Hi", html="<p>Hi</p>", from_email="team@example.com", priority=2
        )
        return plain, custom

    plain, custom = asyncio.run(scenario())

    assert "from" not in plain.data
    assert custom.data["from"] == "team@example.com"
    assert custom.options.priority == 2
    assert custom.options.remove_on_complete == 100


def test_image_and_report_jobs_use_fixed_backoff(queues):
    async def scenario():
        image = await queues.add_image_processing_job(
            image_url="https://cdn.example.com/a.png", user_id="u1", operations=[{"type": "resize", "width": 200}]
        )
        report = await queues.add_report_job(user_id="u1", report_type="bookings")
        return image, report

    image, report = asyncio.run(scenario())

    assert image.name == "process-image"
    assert image.data["imageUrl"] == "https://cdn.example.com/a.png"
    assert (image.options.attempts, image.options.backoff.type, image.options.backoff.delay_ms) == (2, "fixed", 5000)
    assert report.name == "generate-report"
    assert report.data == {"userId": "u1", "reportType": "bookings", "filters": {}}
    assert report.options.backoff.delay_ms == 10_000


def test_delayed_background_job(queues):
    async def scenario():
        job = await queues.add_background_job("cleanup-notifications", {"olderThanDays": 30}, delay_ms=60_000)
        queue = queues.get("background-jobs")
        return job, await queue.list_jobs(JobState.DELAYED), await queue.list_jobs(JobState.WAITING)

    job, delayed, waiting = asyncio.run(scenario())

    assert job.options.delay_ms == 60_000
    assert [item.id for item in delayed] == [job.id]
    assert waiting == []


def test_event_jobs_only_go_to_event_queues(queues):
    with pytest.raises(ValueError, match="Not an event queue: email"):
        asyncio.run(queues.add_event_job("email", "user.created", {"userId": "u1"}))

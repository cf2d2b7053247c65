from __future__ import annotations

import logging

from cadence.events.bus import EventBus
from cadence.events.catalog import ReviewCreated
from cadence.events.listeners.base import ListenerContext
from cadence.services.booking_service import review_summary

logger = logging.getLogger(__name__)


def register(bus: EventBus, ctx: ListenerContext) -> None:
    async def on_review_created(payload: ReviewCreated) -> None:
        review = await ctx.read(review_summary, payload["reviewId"])
        if review is None:
            logger.warning("Review not found review_id=%s", payload["reviewId"])
            return
        await ctx.queues.add_notification_job(
            user_id=payload["userId"],
            title="Thank You for Your Review!",
            body=f"Thank you for reviewing {review['serviceName']}. Your feedback helps us improve!",
            data={"type": "review_thanks", "reviewId": payload["reviewId"]},
        )
        logger.info("New review rating=%s service_id=%s", payload["rating"], payload["serviceId"])

    bus.on("review.created", on_review_created)

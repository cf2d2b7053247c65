"""Processors for the ``*-events`` queues.

Each job is named after the domain event it carries. The processor re-reads
whatever it needs, then fans out into email and notification jobs. An entity
that has disappeared since the event was emitted is logged and skipped.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session

from cadence.jobs import templates
from cadence.jobs.queue import Job
from cadence.jobs.queues import JobQueues
from cadence.services.booking_service import booking_summary, mark_booking_paid
from cadence.services.user_service import get_user, serialize_user_public

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _user_contact(db: Session, user_id: str) -> dict[str, object] | None:
    user = get_user(db, user_id)
    return serialize_user_public(user) if user is not None else None


class _EventProcessor:
    queue_name = ""

    def __init__(self, queues: JobQueues, session_factory: Callable[[], Session], *, base_url: str) -> None:
        self._queues = queues
        self._session_factory = session_factory
        self._base_url = base_url.rstrip("/")

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        with self._session_factory() as db:
            return fn(db, *args)

    async def _read(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._in_session, fn, *args)

    async def _handle(self, name: str, data: dict[str, Any]) -> bool:
        raise NotImplementedError

    async def __call__(self, job: Job) -> dict[str, object]:
        logger.info("Processing event queue=%s name=%s job_id=%s", self.queue_name, job.name, job.id)
        if not await self._handle(job.name, job.data):
            logger.warning("Unknown event type queue=%s name=%s", self.queue_name, job.name)
        return {"success": True, "event": job.name}


class UserEventsProcessor(_EventProcessor):
    queue_name = "user-events"

    async def _handle(self, name: str, data: dict[str, Any]) -> bool:
        match name:
            case "user.created":
                subject, html = templates.welcome_email(name=data.get("name"), base_url=self._base_url)
                await self._queues.add_email_job(to=data["email"], subject=subject, html=html)
                await self._queues.add_notification_job(
                    user_id=data["userId"],
                    title="Welcome to Cadence!",
                    body="Thanks for joining us. Let's get started!",
                    data={"type": "welcome"},
                )
            case "user.updated":
                logger.info("User updated user_id=%s", data.get("userId"))
            case "user.deleted":
                subject, html = templates.account_deleted_email(name=data.get("name"))
                await self._queues.add_email_job(to=data["email"], subject=subject, html=html)
            case _:
                return False
        return True


class BookingEventsProcessor(_EventProcessor):
    queue_name = "booking-events"

    async def _handle(self, name: str, data: dict[str, Any]) -> bool:
        match name:
            case "booking.created":
                await self._booking_created(data)
            case "booking.updated":
                await self._booking_updated(data)
            case "booking.cancelled":
                await self._booking_cancelled(data)
            case _:
                return False
        return True

    async def _load(self, data: dict[str, Any]) -> tuple[dict[str, object], dict[str, object]] | None:
        user = await self._read(_user_contact, data["userId"])
        booking = await self._read(booking_summary, data["bookingId"])
        if user is None or booking is None:
            logger.warning(
                "Booking event skipped user_found=%s booking_found=%s booking_id=%s",
                user is not None,
                booking is not None,
                data["bookingId"],
            )
            return None
        return user, booking

    async def _booking_created(self, data: dict[str, Any]) -> None:
        loaded = await self._load(data)
        if loaded is None:
            return
        user, booking = loaded
        subject, html = templates.booking_confirmed_email(name=user["name"], booking=booking, base_url=self._base_url)
        await self._queues.add_email_job(to=str(user["email"]), subject=subject, html=html)
        await self._queues.add_notification_job(
            user_id=data["userId"],
            title="Booking Confirmed!",
            body=f"Your booking for {booking['serviceName']} on {booking['date']} is confirmed.",
            data={"type": "booking_confirmed", "bookingId": data["bookingId"], "action": "view_booking"},
        )

    async def _booking_updated(self, data: dict[str, Any]) -> None:
        loaded = await self._load(data)
        if loaded is None:
            return
        user, booking = loaded
        status = str(data.get("status") or booking["status"])
        await self._queues.add_notification_job(
            user_id=data["userId"],
            title="Booking Status Updated",
            body=f"Your booking for {booking['serviceName']} is now {status}",
            data={"type": "booking_updated", "bookingId": data["bookingId"], "status": status},
        )
        # Only confirmations and completions warrant an email.
        if status in ("CONFIRMED", "COMPLETED"):
            subject, html = templates.booking_status_email(name=user["name"], booking=booking, status=status)
            await self._queues.add_email_job(to=str(user["email"]), subject=subject, html=html)

    async def _booking_cancelled(self, data: dict[str, Any]) -> None:
        loaded = await self._load(data)
        if loaded is None:
            return
        user, booking = loaded
        reason = data.get("reason")
        subject, html = templates.booking_cancelled_email(name=user["name"], booking=booking, reason=reason)
        await self._queues.add_email_job(to=str(user["email"]), subject=subject, html=html)
        await self._queues.add_notification_job(
            user_id=data["userId"],
            title="Booking Cancelled",
            body=reason or f"Your booking for {booking['serviceName']} has been cancelled.",
            data={"type": "booking_cancelled", "bookingId": data["bookingId"]},
        )


class PaymentEventsProcessor(_EventProcessor):
    queue_name = "payment-events"

    async def _handle(self, name: str, data: dict[str, Any]) -> bool:
        match name:
            case "payment.completed":
                await self._payment_completed(data)
            case "payment.failed":
                await self._payment_failed(data)
            case _:
                return False
        return True

    async def _optional_booking(self, data: dict[str, Any]) -> dict[str, object] | None:
        booking_id = data.get("bookingId")
        if not booking_id:
            return None
        return await self._read(booking_summary, booking_id)

    async def _payment_completed(self, data: dict[str, Any]) -> None:
        user = await self._read(_user_contact, data["userId"])
        if user is None:
            logger.warning("Payment event skipped; user not found user_id=%s", data["userId"])
            return
        amount = float(data["amount"])
        booking = await self._optional_booking(data)
        subject, html = templates.payment_receipt_email(
            name=user["name"],
            amount=amount,
            payment_id=data.get("paymentId"),
            booking=booking,
        )
        await self._queues.add_email_job(to=str(user["email"]), subject=subject, html=html)
        await self._queues.add_notification_job(
            user_id=data["userId"],
            title="Payment Successful!",
            body=f"Your payment of ${amount:.2f} was processed successfully.",
            data={
                "type": "payment_completed",
                "paymentId": data.get("paymentId"),
                "amount": amount,
                "bookingId": data.get("bookingId"),
                "action": "view_receipt",
            },
        )
        if booking is not None:
            await self._read(mark_booking_paid, booking["id"])

    async def _payment_failed(self, data: dict[str, Any]) -> None:
        user = await self._read(_user_contact, data["userId"])
        if user is None:
            logger.warning("Payment event skipped; user not found user_id=%s", data["userId"])
            return
        amount = float(data["amount"])
        reason = data.get("reason")
        booking = await self._optional_booking(data)
        subject, html = templates.payment_failed_email(
            name=user["name"],
            amount=amount,
            reason=reason,
            booking=booking,
            base_url=self._base_url,
        )
        await self._queues.add_email_job(to=str(user["email"]), subject=subject, html=html)
        await self._queues.add_notification_job(
            user_id=data["userId"],
            title="Payment Failed",
            body=f"Payment failed: {reason or 'Please try again'}",
            data={
                "type": "payment_failed",
                "amount": amount,
                "reason": reason,
                "bookingId": data.get("bookingId"),
                "action": "retry_payment",
            },
        )

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from cadence.events import EventBus
from cadence.events.listeners import register_all_listeners
from cadence.jobs import Job, JobState
from cadence.models import Booking, Review, Service


def _create_booking(session_factory, user_id: str, *, service_name: str = "Deep Cleaning") -> str:
    with session_factory() as db:
        service = Service(name=service_name)
        db.add(service)
        db.flush()
        booking = Booking(
            user_id=user_id,
            service_id=service.id,
            date=datetime(2026, 3, 14, 10, 0, tzinfo=UTC),
            location="12 Main Street",
        )
        db.add(booking)
        db.commit()
        return booking.id


def _create_review(session_factory, user_id: str) -> tuple[str, str]:
    with session_factory() as db:
        service = Service(name="Window Washing")
        db.add(service)
        db.flush()
        review = Review(user_id=user_id, service_id=service.id, rating=5, comment="Great")
        db.add(review)
        db.commit()
        return review.id, service.id


def _emit_and_collect(queues, database, events: list[tuple[str, dict]], queue_name: str) -> list[Job]:
    async def scenario() -> list[Job]:
        bus = EventBus()
        register_all_listeners(bus, queues=queues, session_factory=database)
        for name, payload in events:
            bus.emit(name, payload)
        await bus.drain()
        return await queues.get(queue_name).list_jobs(JobState.WAITING)

    return asyncio.run(scenario())


def test_user_created_is_forwarded_to_user_events(queues, database, make_user):
    user_id = make_user("alice@example.com", name="Alice")
    payload = {"userId": user_id, "email": "alice@example.com", "name": "Alice", "role": "USER"}

    jobs = _emit_and_collect(queues, database, [("user.created", payload)], "user-events")

    assert [job.name for job in jobs] == ["user.created"]
    assert jobs[0].data == payload
    assert jobs[0].options.attempts == 3
    assert jobs[0].options.backoff.delay_ms == 1000


def test_user_created_for_missing_user_is_dropped(queues, database):
    jobs = _emit_and_collect(
        queues,
        database,
        [("user.created", {"userId": "ghost", "email": "ghost@example.com", "name": None, "role": "USER"})],
        "user-events",
    )
    assert jobs == []


def test_user_updated_is_only_logged(queues, database, make_user, caplog):
    user_id = make_user("alice@example.com")
    with caplog.at_level("INFO", logger="cadence.events.listeners.user"):
        jobs = _emit_and_collect(
            queues,
            database,
            [("user.updated", {"userId": user_id, "changes": {"name": "A", "email": "b"}})],
            "user-events",
        )

    assert jobs == []
    assert "fields=email,name" in caplog.text


def test_user_deleted_is_forwarded_without_lookup(queues, database):
    jobs = _emit_and_collect(
        queues,
        database,
        [("user.deleted", {"userId": "gone", "email": "gone@example.com"})],
        "user-events",
    )
    assert [job.name for job in jobs] == ["user.deleted"]


def test_booking_events_are_forwarded_when_booking_exists(queues, database, make_user):
    user_id = make_user("alice@example.com")
    booking_id = _create_booking(database, user_id)

    jobs = _emit_and_collect(
        queues,
        database,
        [
            ("booking.created", {"bookingId": booking_id, "userId": user_id}),
            ("booking.updated", {"bookingId": booking_id, "userId": user_id, "status": "CONFIRMED"}),
            ("booking.cancelled", {"bookingId": booking_id, "userId": user_id, "reason": "Rain"}),
            ("booking.created", {"bookingId": "missing", "userId": user_id}),
        ],
        "booking-events",
    )

    assert sorted(job.name for job in jobs) == ["booking.cancelled", "booking.created", "booking.updated"]
    assert all(job.data["bookingId"] == booking_id for job in jobs)


def test_payment_events_require_known_user(queues, database, make_user):
    user_id = make_user("alice@example.com")

    jobs = _emit_and_collect(
        queues,
        database,
        [
            ("payment.completed", {"paymentId": "p1", "userId": user_id, "amount": 42.5}),
            ("payment.failed", {"userId": user_id, "amount": 10.0, "reason": "card declined"}),
            ("payment.completed", {"paymentId": "p2", "userId": "ghost", "amount": 1.0}),
        ],
        "payment-events",
    )

    assert sorted(job.name for job in jobs) == ["payment.completed", "payment.failed"]


def test_review_created_thanks_the_reviewer(queues, database, make_user):
    user_id = make_user("alice@example.com")
    review_id, service_id = _create_review(database, user_id)

    jobs = _emit_and_collect(
        queues,
        database,
        [("review.created", {"reviewId": review_id, "userId": user_id, "serviceId": service_id, "rating": 5})],
        "notification",
    )

    assert len(jobs) == 1
    assert jobs[0].name == "send-notification"
    assert jobs[0].data["title"] == "Thank You for Your Review!"
    assert "Window Washing" in jobs[0].data["body"]
    assert jobs[0].data["data"] == {"type": "review_thanks", "reviewId": review_id}


def test_message_sent_notifies_only_offline_receivers(queues, database, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com", name="Bob")
    base = {"messageId": "m1", "senderId": bob_id, "receiverId": alice_id, "roomId": "r1"}

    jobs = _emit_and_collect(
        queues,
        database,
        [
            ("message.sent", {**base, "delivered": True}),
            ("message.sent", {**base, "messageId": "m2", "delivered": False}),
        ],
        "notification",
    )

    assert len(jobs) == 1
    assert jobs[0].data["userId"] == alice_id
    assert jobs[0].data["senderId"] == bob_id
    assert jobs[0].data["body"] == "Bob sent you a message"
    assert jobs[0].data["data"]["messageId"] == "m2"

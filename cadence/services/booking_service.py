from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from cadence.models import Booking, Review

logger = logging.getLogger(__name__)


def booking_summary(db: Session, booking_id: str) -> dict[str, object] | None:
    """Plain snapshot of a booking and its service, safe to use after the session closes."""
    booking = db.scalar(select(Booking).options(joinedload(Booking.service)).where(Booking.id == booking_id))
    if booking is None:
        return None
    return {
        "id": booking.id,
        "userId": booking.user_id,
        "serviceName": booking.service.name,
        "date": booking.date.date().isoformat(),
        "location": booking.location,
        "status": booking.status,
        "isPaid": booking.is_paid,
    }


def review_summary(db: Session, review_id: str) -> dict[str, object] | None:
    review = db.scalar(select(Review).options(joinedload(Review.service)).where(Review.id == review_id))
    if review is None:
        return None
    return {
        "id": review.id,
        "userId": review.user_id,
        "serviceName": review.service.name,
        "rating": review.rating,
    }


def mark_booking_paid(db: Session, booking_id: str) -> bool:
    booking = db.get(Booking, booking_id)
    if booking is None:
        logger.warning("Booking not found for payment booking_id=%s", booking_id)
        return False
    booking.is_paid = True
    db.commit()
    logger.info("Booking marked as paid booking_id=%s", booking_id)
    return True

"""Closed catalogue of domain events and the payload shape each one carries."""
from __future__ import annotations

from typing import Literal, NotRequired, TypedDict, get_args


class UserCreated(TypedDict):
    userId: str
    email: str
    name: str | None
    role: str


class UserUpdated(TypedDict):
    userId: str
    changes: dict[str, object]


class UserDeleted(TypedDict):
    userId: str
    email: str


class BookingCreated(TypedDict):
    bookingId: str
    userId: str
    serviceId: NotRequired[str]
    date: NotRequired[str]


class BookingUpdated(TypedDict):
    bookingId: str
    userId: str
    status: str


class BookingCancelled(TypedDict):
    bookingId: str
    userId: str
    reason: NotRequired[str | None]


class PaymentCompleted(TypedDict):
    paymentId: str
    userId: str
    amount: float
    bookingId: NotRequired[str | None]


class PaymentFailed(TypedDict):
    userId: str
    amount: float
    reason: str
    bookingId: NotRequired[str | None]


class ReviewCreated(TypedDict):
    reviewId: str
    userId: str
    serviceId: str
    rating: int


class NotificationSent(TypedDict):
    notificationId: str
    userId: str
    type: str


class MessageSent(TypedDict):
    messageId: str
    senderId: str
    receiverId: str
    roomId: str
    delivered: NotRequired[bool]


EventName = Literal[
    "user.created",
    "user.updated",
    "user.deleted",
    "booking.created",
    "booking.updated",
    "booking.cancelled",
    "payment.completed",
    "payment.failed",
    "review.created",
    "notification.sent",
    "message.sent",
]

EVENT_NAMES: frozenset[str] = frozenset(get_args(EventName))

EVENT_PAYLOADS: dict[str, type] = {
    "user.created": UserCreated,
    "user.updated": UserUpdated,
    "user.deleted": UserDeleted,
    "booking.created": BookingCreated,
    "booking.updated": BookingUpdated,
    "booking.cancelled": BookingCancelled,
    "payment.completed": PaymentCompleted,
    "payment.failed": PaymentFailed,
    "review.created": ReviewCreated,
    "notification.sent": NotificationSent,
    "message.sent": MessageSent,
}

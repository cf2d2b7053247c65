from cadence.models.booking import Booking, Review, Service
from cadence.models.message import Message
from cadence.models.notification import Notification
from cadence.models.room import Room, pair_key
from cadence.models.user import ROLE_ADMIN, ROLE_USER, User

__all__ = [
    "Booking",
    "Message",
    "Notification",
    "ROLE_ADMIN",
    "ROLE_USER",
    "Review",
    "Room",
    "Service",
    "User",
    "pair_key",
]

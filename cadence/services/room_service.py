from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cadence.models import Room, pair_key

logger = logging.getLogger(__name__)


def find_room(db: Session, *, user_id: str, other_user_id: str) -> Room | None:
    """Look up the room for an unordered pair; (a, b) and (b, a) resolve to the same row."""
    return db.scalar(
        select(Room).where(
            or_(
                Room.pair_key == pair_key(user_id, other_user_id),
                (Room.sender_id == user_id) & (Room.receiver_id == other_user_id),
                (Room.sender_id == other_user_id) & (Room.receiver_id == user_id),
            )
        )
    )


def resolve_room(db: Session, *, user_id: str, other_user_id: str) -> Room:
    """Find or create the room between two users.

    Creation relies on the unique ``pair_key`` constraint: a concurrent creator
    that loses the race gets an IntegrityError, rolls back, and re-reads the
    winner's row instead of creating a second room.
    """
    existing = find_room(db, user_id=user_id, other_user_id=other_user_id)
    if existing is not None:
        logger.debug("Resolved existing room room_id=%s", existing.id)
        return existing

    room = Room(sender_id=user_id, receiver_id=other_user_id, pair_key=pair_key(user_id, other_user_id))
    db.add(room)
    try:
        db.commit()
    except IntegrityError:
        logger.info(
            "Room creation conflict; re-fetching existing room user_id=%s other_user_id=%s",
            user_id,
            other_user_id,
        )
        db.rollback()
        existing_after_conflict = find_room(db, user_id=user_id, other_user_id=other_user_id)
        if existing_after_conflict is None:
            raise
        return existing_after_conflict

    db.refresh(room)
    logger.info("Room created room_id=%s users=%s,%s", room.id, user_id, other_user_id)
    return room


def list_user_rooms(db: Session, user_id: str) -> list[Room]:
    return list(
        db.scalars(
            select(Room)
            .where(or_(Room.sender_id == user_id, Room.receiver_id == user_id))
            .order_by(Room.created_at.desc())
        ).all()
    )


def counterpart_id(room: Room, user_id: str) -> str:
    return room.receiver_id if room.sender_id == user_id else room.sender_id

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cadence.models import Message
from cadence.services import room_service, user_service
from cadence.services.serialization import serialize_datetime

logger = logging.getLogger(__name__)


def serialize_message(message: Message) -> dict[str, object]:
    return {
        "id": message.id,
        "roomId": message.room_id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "message": message.message,
        "images": list(message.images or []),
        "isRead": message.is_read,
        "createdAt": serialize_datetime(message.created_at),
    }


def send_message(
    db: Session,
    *,
    sender_id: str,
    receiver_id: str,
    message: str,
    images: list[str] | None = None,
) -> dict[str, object]:
    room = room_service.resolve_room(db, user_id=sender_id, other_user_id=receiver_id)
    chat = Message(
        room_id=room.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        message=message,
        images=list(images or []),
    )
    db.add(chat)
    db.commit()
    db.refresh(chat)
    logger.info("Message persisted message_id=%s room_id=%s sender_id=%s", chat.id, room.id, sender_id)
    return serialize_message(chat)


def fetch_chats(
    db: Session,
    *,
    user_id: str,
    receiver_id: str,
    page: int,
    limit: int,
) -> list[dict[str, object]]:
    """Return one page of the room history, oldest first, and mark the caller's inbound messages read."""
    room = room_service.find_room(db, user_id=user_id, other_user_id=receiver_id)
    if room is None:
        logger.debug("No room for fetchChats user_id=%s receiver_id=%s", user_id, receiver_id)
        return []

    chats = db.scalars(
        select(Message)
        .where(Message.room_id == room.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    payload = [serialize_message(chat) for chat in chats]

    result = db.execute(
        update(Message)
        .where(Message.room_id == room.id, Message.receiver_id == user_id, Message.is_read.is_(False))
        .values(is_read=True)
    )
    db.commit()
    logger.debug("Fetched chats room_id=%s returned=%s marked_read=%s", room.id, len(payload), result.rowcount)
    return payload


def unread_messages(db: Session, *, user_id: str, receiver_id: str) -> dict[str, object] | None:
    room = room_service.find_room(db, user_id=user_id, other_user_id=receiver_id)
    if room is None:
        return None

    rows = db.scalars(
        select(Message)
        .where(Message.room_id == room.id, Message.receiver_id == user_id, Message.is_read.is_(False))
        .order_by(Message.created_at.asc())
    ).all()
    messages = [serialize_message(row) for row in rows]
    return {"messages": messages, "count": len(messages)}


def message_list(db: Session, *, user_id: str) -> list[dict[str, object]]:
    """Every room of the user with the counterpart's profile and the room's latest message."""
    rooms = room_service.list_user_rooms(db, user_id)
    if not rooms:
        return []

    room_ids = [room.id for room in rooms]
    latest_created = (
        select(Message.room_id, func.max(Message.created_at).label("latest"))
        .where(Message.room_id.in_(room_ids))
        .group_by(Message.room_id)
        .subquery()
    )
    latest_rows = db.scalars(
        select(Message).join(
            latest_created,
            (Message.room_id == latest_created.c.room_id) & (Message.created_at == latest_created.c.latest),
        )
    ).all()
    last_by_room: dict[str, Message] = {}
    for row in latest_rows:
        last_by_room.setdefault(row.room_id, row)

    counterparts = [room_service.counterpart_id(room, user_id) for room in rooms]
    users_by_id = {user.id: user for user in user_service.fetch_users_by_ids(db, counterparts)}

    entries: list[dict[str, object]] = []
    for room in rooms:
        other = users_by_id.get(room_service.counterpart_id(room, user_id))
        last = last_by_room.get(room.id)
        entries.append(
            {
                "roomId": room.id,
                "user": user_service.serialize_user_public(other) if other is not None else None,
                "lastMessage": serialize_message(last) if last is not None else None,
            }
        )
    entries.sort(key=lambda entry: (entry["lastMessage"] or {}).get("createdAt") or "", reverse=True)
    return entries


def online_user_profiles(db: Session, user_ids: Iterable[str]) -> list[dict[str, object]]:
    return [user_service.serialize_user_public(user) for user in user_service.fetch_users_by_ids(db, user_ids)]

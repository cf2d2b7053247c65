from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

INVALID_PAYLOAD = "INVALID_PAYLOAD"
UNAUTHENTICATED = "UNAUTHENTICATED"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
SERVER_ERROR = "SERVER_ERROR"


@dataclass(slots=True)
class ProtocolError(Exception):
    code: str
    message: str


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AuthenticateFrame(_Frame):
    event: Literal["authenticate"]
    token: str | None = None


class SendMessageFrame(_Frame):
    event: Literal["sendMessage"]
    receiver_id: str = Field(alias="receiverId", min_length=1)
    message: str = Field(min_length=1)
    images: list[str] = Field(default_factory=list)


class FetchChatsFrame(_Frame):
    event: Literal["fetchChats"]
    receiver_id: str = Field(alias="receiverId", min_length=1)
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class OnlineUsersFrame(_Frame):
    event: Literal["onlineUsers"]


class UnreadMessagesFrame(_Frame):
    event: Literal["unReadMessages"]
    receiver_id: str = Field(alias="receiverId", min_length=1)


class MessageListFrame(_Frame):
    event: Literal["messageList"]


class TypingFrame(_Frame):
    event: Literal["typing"]
    receiver_id: str = Field(alias="receiverId", min_length=1)
    room_id: str = Field(alias="roomId", min_length=1)
    is_typing: bool = Field(alias="isTyping")


class GetOnlineStatusFrame(_Frame):
    event: Literal["getOnlineStatus"]
    user_ids: list[str] = Field(alias="userIds")


class PingFrame(_Frame):
    event: Literal["ping"]


class PongFrame(_Frame):
    event: Literal["pong"]


InboundFrame = Annotated[
    Union[
        AuthenticateFrame,
        SendMessageFrame,
        FetchChatsFrame,
        OnlineUsersFrame,
        UnreadMessagesFrame,
        MessageListFrame,
        TypingFrame,
        GetOnlineStatusFrame,
        PingFrame,
        PongFrame,
    ],
    Field(discriminator="event"),
]

_inbound_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)

INBOUND_EVENTS = frozenset(
    {
        "authenticate",
        "sendMessage",
        "fetchChats",
        "onlineUsers",
        "unReadMessages",
        "messageList",
        "typing",
        "getOnlineStatus",
        "ping",
        "pong",
    }
)


def _validation_message(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"][1:]) or "frame"
    return f"{location}: {error['msg']}"


def parse_frame(raw_text: str, *, max_bytes: int) -> InboundFrame | None:
    """Decode one inbound frame. Returns None for event names this server does not handle."""
    if len(raw_text.encode("utf-8")) > max_bytes:
        raise ProtocolError(code=INVALID_PAYLOAD, message="Frame is too large")

    try:
        decoded = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(code=INVALID_PAYLOAD, message="Invalid JSON payload") from exc

    if not isinstance(decoded, dict):
        raise ProtocolError(code=INVALID_PAYLOAD, message="Frame must be an object")

    event = decoded.get("event")
    if not isinstance(event, str) or not event:
        raise ProtocolError(code=INVALID_PAYLOAD, message="Frame must carry an event name")
    if event not in INBOUND_EVENTS:
        return None

    try:
        return _inbound_adapter.validate_python(decoded)
    except ValidationError as exc:
        raise ProtocolError(code=INVALID_PAYLOAD, message=_validation_message(exc)) from exc


def data_frame(event: str, data: object) -> dict[str, object]:
    return {"event": event, "data": data}


def authenticated_frame(*, user_id: str) -> dict[str, object]:
    return {"event": "authenticated", "success": True, "userId": user_id}


def authorization_failed_frame(*, message: str) -> dict[str, object]:
    return {"event": "authorization", "success": False, "message": message}


def message_frame(message: dict[str, object]) -> dict[str, object]:
    return data_frame("message", message)


def typing_status_frame(*, user_id: str, room_id: str, is_typing: bool) -> dict[str, object]:
    return data_frame("typingStatus", {"userId": user_id, "roomId": room_id, "isTyping": is_typing})


def user_status_frame(*, user_id: str, is_online: bool, timestamp: int) -> dict[str, object]:
    return data_frame("userStatus", {"userId": user_id, "isOnline": is_online, "timestamp": timestamp})


def ping_frame() -> dict[str, object]:
    return {"event": "ping"}


def pong_frame() -> dict[str, object]:
    return {"event": "pong"}


def error_frame(*, code: str, message: str) -> dict[str, object]:
    return {"event": "error", "code": code, "message": message}

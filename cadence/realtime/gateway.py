from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, TypeVar

from fastapi import WebSocket
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadence.core.errors import APIError
from cadence.core.security import decode_access_token
from cadence.core.settings import Settings
from cadence.events import EventBus
from cadence.realtime.connection_manager import ConnectionContext, ConnectionManager
from cadence.realtime.presence import PresenceTracker, TypingTracker
from cadence.realtime.protocol import (
    INVALID_PAYLOAD,
    PERSISTENCE_ERROR,
    SERVER_ERROR,
    UNAUTHENTICATED,
    AuthenticateFrame,
    FetchChatsFrame,
    GetOnlineStatusFrame,
    InboundFrame,
    MessageListFrame,
    OnlineUsersFrame,
    PingFrame,
    PongFrame,
    ProtocolError,
    SendMessageFrame,
    TypingFrame,
    UnreadMessagesFrame,
    authenticated_frame,
    authorization_failed_frame,
    data_frame,
    error_frame,
    message_frame,
    parse_frame,
    ping_frame,
    pong_frame,
    typing_status_frame,
)
from cadence.services import chat_service
from cadence.services.user_service import get_user

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLICY_VIOLATION = 1008
HEARTBEAT_TIMEOUT = 1001


class RealtimeGateway:
    """Owns the socket-side state of one process: connections, presence and typing.

    Frames from one connection are handled one at a time by the caller's
    receive loop. Heartbeat and typing sweeps run as background tasks between
    ``start`` and ``stop``.
    """

    def __init__(
        self,
        *,
        connections: ConnectionManager,
        session_factory: Callable[[], Session],
        bus: EventBus | None = None,
        heartbeat_sec: float = 30.0,
        typing_timeout_sec: float = 3.0,
        typing_sweep_sec: float = 1.0,
        max_frame_bytes: int = 64 * 1024,
        message_max_length: int = 2000,
        message_max_images: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.connections = connections
        self.presence = PresenceTracker(connections)
        self.typing = TypingTracker(timeout_sec=typing_timeout_sec, clock=clock)
        self._session_factory = session_factory
        self._bus = bus
        self._heartbeat_sec = heartbeat_sec
        self._typing_sweep_sec = typing_sweep_sec
        self._max_frame_bytes = max_frame_bytes
        self._message_max_length = message_max_length
        self._message_max_images = message_max_images
        self._tasks: list[asyncio.Task[None]] = []
        connections.on_unregister = self._on_unregister

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        session_factory: Callable[[], Session],
        bus: EventBus | None = None,
    ) -> RealtimeGateway:
        return cls(
            connections=ConnectionManager(outgoing_queue_size=settings.ws_outgoing_queue_size),
            session_factory=session_factory,
            bus=bus,
            heartbeat_sec=settings.ws_heartbeat_sec,
            typing_timeout_sec=settings.ws_typing_timeout_sec,
            typing_sweep_sec=settings.ws_typing_sweep_sec,
            max_frame_bytes=settings.ws_max_frame_bytes,
            message_max_length=settings.message_max_length,
            message_max_images=settings.message_max_images,
        )

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._periodic(self._heartbeat_sec, self.heartbeat_sweep, "heartbeat")),
            asyncio.create_task(self._periodic(self._typing_sweep_sec, self.typing_sweep, "typing sweep")),
        ]
        logger.info("Realtime gateway started heartbeat_sec=%s", self._heartbeat_sec)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self.connections.close_all()
        logger.info("Realtime gateway stopped")

    async def _periodic(self, interval: float, sweep: Callable[[], Any], name: str) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime %s failed", name)

    async def heartbeat_sweep(self) -> int:
        """Ping clients that speak the ``ping`` event and terminate those silent since the previous sweep.

        Clients that never sent ``ping`` or ``pong`` are left to the server's
        transport-level pings (uvicorn ``ws_ping_interval``).
        """
        terminated = 0
        for context in await self.connections.contexts():
            if not context.uses_ping:
                continue
            if not context.is_alive:
                logger.info(
                    "Terminating unresponsive connection connection_id=%s user_id=%s",
                    context.connection_id,
                    context.user_id,
                )
                await self.connections.unregister(context.connection_id, close_code=HEARTBEAT_TIMEOUT)
                terminated += 1
                continue
            context.is_alive = False
            await self.connections.send(context.connection_id, ping_frame())
        return terminated

    async def typing_sweep(self, now: float | None = None) -> int:
        """Expire stale typing entries and tell each receiver the sender stopped."""
        expired = self.typing.sweep(now)
        for entry in expired:
            if entry.receiver_id is not None:
                await self.connections.send_to_user(
                    entry.receiver_id,
                    typing_status_frame(user_id=entry.user_id, room_id=entry.room_id, is_typing=False),
                )
        return len(expired)

    async def connect(self, websocket: WebSocket) -> ConnectionContext:
        return await self.connections.register(websocket)

    async def disconnect(self, context: ConnectionContext, *, close_code: int = 1000) -> None:
        await self.connections.unregister(context.connection_id, close_code=close_code)

    async def _on_unregister(self, context: ConnectionContext) -> None:
        if context.user_id is not None:
            await self._settle_offline(context.user_id)

    async def _settle_offline(self, user_id: str) -> None:
        """Purge typing and broadcast offline once the user has no connection left."""
        if await self.connections.is_user_connected(user_id):
            return
        self.typing.purge_user(user_id)
        await self.presence.broadcast_status(user_id, False)
        logger.info("User went offline user_id=%s", user_id)

    async def _send(self, context: ConnectionContext, frame: dict[str, object]) -> None:
        await self.connections.send(context.connection_id, frame)

    async def _db(self, fn: Callable[..., T], **kwargs: Any) -> T:
        def run() -> T:
            with self._session_factory() as db:
                return fn(db, **kwargs)

        return await asyncio.to_thread(run)

    async def handle_raw(self, context: ConnectionContext, raw_text: str) -> None:
        self.connections.touch(context)
        try:
            frame = parse_frame(raw_text, max_bytes=self._max_frame_bytes)
        except ProtocolError as exc:
            logger.info("Rejected frame connection_id=%s code=%s message=%s", context.connection_id, exc.code, exc.message)
            await self._send(context, error_frame(code=exc.code, message=exc.message))
            return

        if frame is None:
            logger.warning("Unknown event ignored connection_id=%s", context.connection_id)
            return

        logger.debug("WebSocket event=%s connection_id=%s user_id=%s", frame.event, context.connection_id, context.user_id)
        try:
            await self.dispatch(context, frame)
        except ProtocolError as exc:
            await self._send(context, error_frame(code=exc.code, message=exc.message))
        except Exception:
            logger.exception("Error handling frame event=%s connection_id=%s", frame.event, context.connection_id)
            await self._send(context, error_frame(code=SERVER_ERROR, message="Failed to process message"))

    async def dispatch(self, context: ConnectionContext, frame: InboundFrame) -> None:
        match frame:
            case AuthenticateFrame():
                await self._authenticate(context, frame)
            case PingFrame():
                context.uses_ping = True
                await self._send(context, pong_frame())
            case PongFrame():
                context.uses_ping = True
            case GetOnlineStatusFrame():
                await self._send(context, data_frame("onlineStatus", await self.presence.statuses(frame.user_ids)))
            case SendMessageFrame():
                await self._send_message(context, self._require_user(context), frame)
            case FetchChatsFrame():
                chats = await self._db(
                    chat_service.fetch_chats,
                    user_id=self._require_user(context),
                    receiver_id=frame.receiver_id,
                    page=frame.page,
                    limit=frame.limit,
                )
                await self._send(context, data_frame("fetchChats", chats))
            case OnlineUsersFrame():
                self._require_user(context)
                online_ids = await self.presence.online_user_ids()
                profiles = await self._db(chat_service.online_user_profiles, user_ids=online_ids)
                await self._send(context, data_frame("onlineUsers", profiles))
            case UnreadMessagesFrame():
                unread = await self._db(
                    chat_service.unread_messages,
                    user_id=self._require_user(context),
                    receiver_id=frame.receiver_id,
                )
                if unread is None:
                    await self._send(context, data_frame("noUnreadMessages", []))
                else:
                    await self._send(context, data_frame("unReadMessages", unread))
            case MessageListFrame():
                entries = await self._db(chat_service.message_list, user_id=self._require_user(context))
                await self._send(context, data_frame("messageList", entries))
            case TypingFrame():
                await self._typing(context, self._require_user(context), frame)

    @staticmethod
    def _require_user(context: ConnectionContext) -> str:
        if context.user_id is None:
            raise ProtocolError(code=UNAUTHENTICATED, message="Authenticate before sending this event")
        return context.user_id

    async def _reject(self, context: ConnectionContext, message: str) -> None:
        await self._send(context, authorization_failed_frame(message=message))
        await self.connections.flush(context)
        await self.connections.unregister(context.connection_id, close_code=POLICY_VIOLATION)

    async def _authenticate(self, context: ConnectionContext, frame: AuthenticateFrame) -> None:
        if not frame.token:
            await self._reject(context, "Token is required for authentication!")
            return

        try:
            claims = decode_access_token(frame.token)
        except APIError:
            await self._reject(context, "Invalid token or user not found!")
            return

        user_id = str(claims["sub"])
        if await self._db(get_user, user_id=user_id) is None:
            await self._reject(context, "Invalid token or user not found!")
            return

        previous = await self.connections.bind_user(context.connection_id, user_id)
        if previous is not None:
            await self._settle_offline(previous)
        await self.presence.broadcast_status(user_id, True)
        await self._send(context, authenticated_frame(user_id=user_id))

    async def _send_message(self, context: ConnectionContext, user_id: str, frame: SendMessageFrame) -> None:
        if len(frame.message) > self._message_max_length:
            raise ProtocolError(code=INVALID_PAYLOAD, message="message is too long")
        if len(frame.images) > self._message_max_images:
            raise ProtocolError(code=INVALID_PAYLOAD, message="Too many images")

        try:
            chat = await self._db(
                chat_service.send_message,
                sender_id=user_id,
                receiver_id=frame.receiver_id,
                message=frame.message,
                images=frame.images,
            )
        except SQLAlchemyError:
            logger.exception("Message persistence failed sender_id=%s receiver_id=%s", user_id, frame.receiver_id)
            await self._send(context, error_frame(code=PERSISTENCE_ERROR, message="Message could not be saved"))
            return

        outbound = message_frame(chat)
        delivered = 0
        if frame.receiver_id != user_id:
            delivered = await self.connections.send_to_user(frame.receiver_id, outbound)
        await self._send(context, outbound)

        if self._bus is not None:
            self._bus.emit(
                "message.sent",
                {
                    "messageId": chat["id"],
                    "senderId": user_id,
                    "receiverId": frame.receiver_id,
                    "roomId": chat["roomId"],
                    "delivered": delivered > 0,
                },
            )

    async def _typing(self, context: ConnectionContext, user_id: str, frame: TypingFrame) -> None:
        if frame.is_typing:
            self.typing.start(user_id, frame.room_id, receiver_id=frame.receiver_id)
        else:
            self.typing.stop(user_id, frame.room_id)
        await self.connections.send_to_user(
            frame.receiver_id,
            typing_status_frame(user_id=user_id, room_id=frame.room_id, is_typing=frame.is_typing),
        )

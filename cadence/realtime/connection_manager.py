from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fastapi import WebSocket

logger = logging.getLogger(__name__)

UnregisterHook = Callable[["ConnectionContext"], Awaitable[None]]


@dataclass
class ConnectionContext:
    connection_id: str
    websocket: WebSocket
    outgoing_queue: asyncio.Queue[dict[str, object]]
    writer_task: asyncio.Task[None] | None
    user_id: str | None = None
    is_alive: bool = True
    uses_ping: bool = False
    last_activity: float = field(default_factory=time.monotonic)
    closed: bool = False


class ConnectionManager:
    """Registry of live sockets and the users bound to them.

    A user is online while at least one of their authenticated connections is
    registered. ``on_unregister`` runs once per removed connection, whichever
    path removed it (client close, writer failure, slow client, heartbeat).
    """

    def __init__(
        self,
        *,
        outgoing_queue_size: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._outgoing_queue_size = outgoing_queue_size
        self._clock = clock
        self._connections: dict[str, ConnectionContext] = {}
        self._connections_by_user: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self.on_unregister: UnregisterHook | None = None

    async def register(self, websocket: WebSocket) -> ConnectionContext:
        connection_id = str(uuid.uuid4())
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=self._outgoing_queue_size)
        context = ConnectionContext(
            connection_id=connection_id,
            websocket=websocket,
            outgoing_queue=queue,
            writer_task=None,
            last_activity=self._clock(),
        )

        async with self._lock:
            self._connections[connection_id] = context
            context.writer_task = asyncio.create_task(self._writer_loop(context))
        logger.info("WebSocket connection registered connection_id=%s", connection_id)
        return context

    async def bind_user(self, connection_id: str, user_id: str) -> str | None:
        """Attach ``user_id`` to the connection.

        Returns the user previously bound to it when re-authentication switched
        users, so the caller can settle that user's presence.
        """
        async with self._lock:
            context = self._connections.get(connection_id)
            if context is None:
                return None
            previous = context.user_id if context.user_id not in (None, user_id) else None
            if previous is not None:
                self._detach_user(context)
            self._connections_by_user.setdefault(user_id, set()).add(connection_id)
            context.user_id = user_id
        logger.info(
            "WebSocket connection authenticated connection_id=%s user_id=%s previous_user_id=%s",
            connection_id,
            user_id,
            previous,
        )
        return previous

    def _detach_user(self, context: ConnectionContext) -> None:
        if context.user_id is None:
            return
        user_connections = self._connections_by_user.get(context.user_id)
        if user_connections is not None:
            user_connections.discard(context.connection_id)
            if not user_connections:
                self._connections_by_user.pop(context.user_id, None)

    def touch(self, context: ConnectionContext) -> None:
        context.is_alive = True
        context.last_activity = self._clock()

    async def flush(self, context: ConnectionContext, *, timeout: float = 1.0) -> None:
        """Wait until queued frames have been written, bounded by ``timeout``."""
        try:
            await asyncio.wait_for(context.outgoing_queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning("WebSocket flush timed out connection_id=%s", context.connection_id)

    async def unregister(
        self,
        connection_id: str,
        *,
        close_socket: bool = True,
        close_code: int = 1000,
    ) -> ConnectionContext | None:
        async with self._lock:
            context = self._connections.pop(connection_id, None)
            if context is None:
                return None
            self._detach_user(context)
            context.closed = True

        # Presence cleanup runs before any await that can be interrupted by cancellation.
        if self.on_unregister is not None:
            try:
                await self.on_unregister(context)
            except Exception:
                logger.exception("Unregister hook failed connection_id=%s", connection_id)

        current_task = asyncio.current_task()
        if context.writer_task is not None and context.writer_task is not current_task:
            context.writer_task.cancel()
            try:
                await context.writer_task
            except asyncio.CancelledError:
                pass

        if close_socket:
            try:
                await context.websocket.close(code=close_code)
            except Exception:
                logger.debug("WebSocket already closed connection_id=%s", connection_id)
        logger.info(
            "WebSocket connection unregistered connection_id=%s user_id=%s close_code=%s",
            connection_id,
            context.user_id,
            close_code,
        )
        return context

    async def _writer_loop(self, context: ConnectionContext) -> None:
        while True:
            payload = await context.outgoing_queue.get()
            try:
                await context.websocket.send_json(payload)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "WebSocket writer failed connection_id=%s user_id=%s error=%s",
                    context.connection_id,
                    context.user_id,
                    exc,
                )
                await self.unregister(context.connection_id, close_socket=False)
                return
            finally:
                context.outgoing_queue.task_done()

    async def send(self, connection_id: str, payload: dict[str, object]) -> bool:
        async with self._lock:
            context = self._connections.get(connection_id)

        if context is None:
            return False

        try:
            context.outgoing_queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            logger.warning("Slow WebSocket client disconnected connection_id=%s", connection_id)
            await self.unregister(connection_id, close_socket=True, close_code=1013)
            return False

    async def send_to_user(self, user_id: str, payload: dict[str, object]) -> int:
        async with self._lock:
            connection_ids = list(self._connections_by_user.get(user_id, set()))

        delivered = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, payload):
                delivered += 1
        return delivered

    async def broadcast(self, payload: dict[str, object]) -> int:
        async with self._lock:
            connection_ids = list(self._connections)

        delivered = 0
        for connection_id in connection_ids:
            if await self.send(connection_id, payload):
                delivered += 1
        return delivered

    async def get(self, connection_id: str) -> ConnectionContext | None:
        async with self._lock:
            return self._connections.get(connection_id)

    async def contexts(self) -> list[ConnectionContext]:
        async with self._lock:
            return list(self._connections.values())

    async def online_user_ids(self) -> list[str]:
        async with self._lock:
            return list(self._connections_by_user)

    async def is_user_connected(self, user_id: str) -> bool:
        async with self._lock:
            return bool(self._connections_by_user.get(user_id))

    async def connections_for_user(self, user_id: str) -> list[str]:
        async with self._lock:
            return list(self._connections_by_user.get(user_id, set()))

    async def connection_count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def close_all(self, *, close_code: int = 1001) -> None:
        for context in await self.contexts():
            await self.unregister(context.connection_id, close_code=close_code)

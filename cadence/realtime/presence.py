from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from cadence.realtime.connection_manager import ConnectionManager
from cadence.realtime.protocol import user_status_frame

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Online status derived from the connection registry. Nothing is persisted."""

    def __init__(self, connections: ConnectionManager, *, clock: Callable[[], float] = time.time) -> None:
        self._connections = connections
        self._clock = clock

    async def is_online(self, user_id: str) -> bool:
        return await self._connections.is_user_connected(user_id)

    async def online_count(self) -> int:
        return len(await self._connections.online_user_ids())

    async def online_user_ids(self) -> list[str]:
        return await self._connections.online_user_ids()

    async def statuses(self, user_ids: list[str]) -> list[dict[str, object]]:
        online = set(await self._connections.online_user_ids())
        return [{"userId": user_id, "isOnline": user_id in online} for user_id in user_ids]

    async def broadcast_status(self, user_id: str, is_online: bool) -> int:
        frame = user_status_frame(user_id=user_id, is_online=is_online, timestamp=int(self._clock() * 1000))
        delivered = await self._connections.broadcast(frame)
        logger.debug("Presence broadcast user_id=%s is_online=%s delivered=%s", user_id, is_online, delivered)
        return delivered


@dataclass(slots=True)
class TypingEntry:
    user_id: str
    room_id: str
    receiver_id: str | None
    started_at: float


class TypingTracker:
    """Typing indicators keyed by (user, room); entries older than ``timeout_sec`` are stale."""

    def __init__(self, *, timeout_sec: float = 3.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._timeout_sec = timeout_sec
        self._clock = clock
        self._entries: dict[tuple[str, str], TypingEntry] = {}

    def start(self, user_id: str, room_id: str, *, receiver_id: str | None = None) -> TypingEntry:
        entry = TypingEntry(user_id=user_id, room_id=room_id, receiver_id=receiver_id, started_at=self._clock())
        self._entries[(user_id, room_id)] = entry
        return entry

    def stop(self, user_id: str, room_id: str) -> bool:
        return self._entries.pop((user_id, room_id), None) is not None

    def purge_user(self, user_id: str) -> int:
        keys = [key for key in self._entries if key[0] == user_id]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def _expired(self, entry: TypingEntry, now: float) -> bool:
        return now - entry.started_at >= self._timeout_sec

    def sweep(self, now: float | None = None) -> list[TypingEntry]:
        current = self._clock() if now is None else now
        expired = [entry for entry in self._entries.values() if self._expired(entry, current)]
        for entry in expired:
            del self._entries[(entry.user_id, entry.room_id)]
        if expired:
            logger.debug("Typing sweep removed=%s remaining=%s", len(expired), len(self._entries))
        return expired

    def active(self) -> list[TypingEntry]:
        now = self._clock()
        return [entry for entry in self._entries.values() if not self._expired(entry, now)]

    def is_typing(self, user_id: str, room_id: str) -> bool:
        entry = self._entries.get((user_id, room_id))
        return entry is not None and not self._expired(entry, self._clock())

    def __len__(self) -> int:
        return len(self._entries)

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session

from cadence.jobs.queues import JobQueues

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ListenerContext:
    queues: JobQueues
    session_factory: Callable[[], Session]

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        with self.session_factory() as db:
            return fn(db, *args)

    async def read(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._in_session, fn, *args)

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from cadence.events.catalog import EVENT_NAMES, EventName

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None | Awaitable[None]]


@dataclass(slots=True)
class _Registration:
    listener: Listener
    once: bool


def _listener_name(listener: Listener) -> str:
    return getattr(listener, "__qualname__", repr(listener))


class EventBus:
    """In-process publish/subscribe over the closed event catalogue.

    ``emit`` invokes listeners in registration order. Coroutine listeners are
    scheduled, not awaited, so emit returns before their side effects finish.
    A failing listener is logged and never reaches the emitter or its siblings.
    """

    def __init__(self, *, max_listeners: int = 20, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._max_listeners = max_listeners
        self._loop = loop
        self._listeners: dict[str, list[_Registration]] = defaultdict(list)
        self._warned: set[str] = set()
        self._pending: set[asyncio.Future[None] | concurrent.futures.Future[None]] = set()

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Loop used for coroutine listeners when emit is called from a worker thread."""
        self._loop = loop

    @staticmethod
    def _check_name(name: str) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {name}")

    def _add(self, name: EventName, listener: Listener, *, once: bool) -> Listener:
        self._check_name(name)
        registrations = self._listeners[name]
        registrations.append(_Registration(listener=listener, once=once))
        if len(registrations) > self._max_listeners and name not in self._warned:
            self._warned.add(name)
            logger.warning(
                "Possible listener leak event=%s listeners=%s max_listeners=%s",
                name,
                len(registrations),
                self._max_listeners,
            )
        logger.debug("Listener registered event=%s listener=%s once=%s", name, _listener_name(listener), once)
        return listener

    def on(self, name: EventName, listener: Listener) -> Listener:
        return self._add(name, listener, once=False)

    def once(self, name: EventName, listener: Listener) -> Listener:
        return self._add(name, listener, once=True)

    def off(self, name: EventName, listener: Listener) -> bool:
        self._check_name(name)
        registrations = self._listeners.get(name, [])
        for index, registration in enumerate(registrations):
            if registration.listener is listener:
                del registrations[index]
                return True
        return False

    def remove_all_listeners(self, name: EventName | None = None) -> None:
        if name is None:
            self._listeners.clear()
            self._warned.clear()
            return
        self._check_name(name)
        self._listeners.pop(name, None)
        self._warned.discard(name)

    def listener_count(self, name: EventName) -> int:
        self._check_name(name)
        return len(self._listeners.get(name, []))

    def emit(self, name: EventName, payload: Any) -> bool:
        self._check_name(name)
        registrations = list(self._listeners.get(name, []))
        if not registrations:
            logger.debug("Event emitted with no listeners event=%s", name)
            return False

        logger.debug("Event emitted event=%s listeners=%s", name, len(registrations))
        for registration in registrations:
            if registration.once:
                self.off(name, registration.listener)
        for registration in registrations:
            self._invoke(name, registration.listener, payload)
        return True

    def _invoke(self, name: str, listener: Listener, payload: Any) -> None:
        try:
            result = listener(payload)
        except Exception:
            logger.exception("Error in event listener event=%s listener=%s", name, _listener_name(listener))
            return
        if inspect.isawaitable(result):
            self._schedule(name, listener, result)

    def _schedule(self, name: str, listener: Listener, awaitable: Awaitable[None]) -> None:
        guarded = self._guard(name, listener, awaitable)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            task = running.create_task(guarded)
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return

        if self._loop is not None and self._loop.is_running():
            future = asyncio.run_coroutine_threadsafe(guarded, self._loop)
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
            return

        guarded.close()
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        logger.warning(
            "Async listener dropped, no running or bound event loop event=%s listener=%s",
            name,
            _listener_name(listener),
        )

    @staticmethod
    async def _guard(name: str, listener: Listener, awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception("Error in async event listener event=%s listener=%s", name, _listener_name(listener))

    async def drain(self) -> None:
        """Wait for scheduled listeners that belong to the current loop."""
        loop = asyncio.get_running_loop()
        while True:
            tasks = [
                item
                for item in self._pending
                if isinstance(item, asyncio.Task) and item.get_loop() is loop and not item.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

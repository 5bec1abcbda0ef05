"""In-flight operation tracking and child session registry."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from typing import Protocol

import structlog

log = structlog.get_logger("xcgen.processing")


class ProcessingCounter:
    """Counting signal for extraction/generation work in flight.

    ``started()`` and ``finished()`` may be called from any thread. The
    count never goes negative and is zero exactly when every started
    operation has finished. Listeners receive the new count after each
    change.
    """

    def __init__(self) -> None:
        self._count = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []
        self.listeners: list[Callable[[int], None]] = []

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def busy(self) -> bool:
        return self.count > 0

    def add_listener(self, callback: Callable[[int], None]) -> None:
        self.listeners.append(callback)

    def started(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError("started() requires a non-negative count")
        with self._lock:
            self._count += n
            count = self._count
        self._notify(count)

    def finished(self, n: int = 1) -> None:
        if n < 0:
            raise ValueError("finished() requires a non-negative count")
        with self._lock:
            if self._count - n < 0:
                raise RuntimeError("Processing task count may never be negative")
            self._count -= n
            count = self._count
            waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []
            if count == 0:
                self._idle.notify_all()
                waiters, self._waiters = self._waiters, []
        for loop, event in waiters:
            loop.call_soon_threadsafe(event.set)
        self._notify(count)

    @asynccontextmanager
    async def track(self) -> AsyncIterator[None]:
        self.started()
        try:
            yield
        finally:
            self.finished()

    def wait_idle_blocking(self, timeout: float | None = None) -> bool:
        with self._idle:
            return self._idle.wait_for(lambda: self._count == 0, timeout=timeout)

    async def wait_idle(self) -> None:
        """Return once the count has dropped to zero.

        Each waiter parks on its own ``asyncio.Event``; ``finished()`` sets
        it through the waiter's loop, so the count may reach zero on any
        thread.
        """
        waiter = (asyncio.get_running_loop(), asyncio.Event())
        with self._lock:
            if self._count == 0:
                return
            self._waiters.append(waiter)
        try:
            await waiter[1].wait()
        finally:
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

    def _notify(self, count: int) -> None:
        for cb in self.listeners:
            try:
                cb(count)
            except Exception:
                log.debug("processing.listener_error", count=count, exc_info=True)


class ChildSession(Protocol):
    """What the registry needs from a tracked child session."""

    name: str
    processing: ProcessingCounter

    def close(self) -> None: ...


class ChildRegistry:
    """Explicit registry of child sessions owned by a parent session.

    Children are registered on creation and unregistered on close; the
    parent forwards its processing events to every registered child.
    """

    def __init__(self) -> None:
        self._children: dict[str, ChildSession] = {}

    def register(self, child: ChildSession, parent_in_flight: int = 0) -> None:
        self._children[child.name] = child
        if parent_in_flight:
            child.processing.started(parent_in_flight)

    def unregister(self, name: str) -> ChildSession | None:
        return self._children.pop(name, None)

    def get(self, name: str) -> ChildSession | None:
        return self._children.get(name)

    @property
    def children(self) -> list[ChildSession]:
        return list(self._children.values())

    def close_all(self) -> None:
        children = list(self._children.values())
        self._children.clear()
        for child in children:
            child.close()

    def __len__(self) -> int:
        return len(self._children)

    def __iter__(self) -> Iterator[ChildSession]:
        return iter(self.children)

"""Clocks and cancellable delayed-task primitives.

Every reminder and every snoozed notification owns exactly one handle.
Re-arming must cancel the previous handle before creating a new one,
otherwise the old callback still fires.

Two timer backends are provided:

* ``ManualTimers`` keeps armed callbacks in a heap and fires the due ones
  when ``run_due()`` is called. The HTTP app drives it from ``/tick`` and a
  background ticker; tests drive it together with a ``FrozenClock``.
* ``LoopTimers`` hands callbacks to a running asyncio loop via
  ``loop.call_later``.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_at(self, when: datetime, callback: Callable[[], None]) -> TimerHandle: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, delta: timedelta) -> datetime:
        self._now = self._now + delta
        return self._now


# ---------------------------------------------------------------------------
# Manual (tick-driven) timers
# ---------------------------------------------------------------------------


class ManualTimerHandle:
    def __init__(
        self,
        when: datetime,
        callback: Callable[[], None],
        on_cancel: Callable[[], None] | None = None,
    ) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()

    def detach(self) -> None:
        self._on_cancel = None


class ManualTimers:
    """Heap of armed callbacks, fired by ``run_due``.

    Cancelled handles are dropped lazily; once they make up half of a heap
    of at least ``compact_threshold`` entries the heap is rebuilt without them.
    """

    compact_threshold = 32

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._heap: list[tuple[datetime, int, ManualTimerHandle]] = []
        self._counter = itertools.count()
        self._cancelled = 0

    def call_at(self, when: datetime, callback: Callable[[], None]) -> ManualTimerHandle:
        handle = ManualTimerHandle(when, callback, on_cancel=self._note_cancelled)
        heapq.heappush(self._heap, (when, next(self._counter), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def queued(self) -> int:
        """Heap entries, cancelled ones not yet dropped included."""
        return len(self._heap)

    def next_due(self) -> datetime | None:
        for when, _, handle in sorted(self._heap):
            if not handle.cancelled:
                return when
        return None

    def compact(self) -> int:
        """Drop cancelled entries from the heap; returns how many were dropped."""
        before = len(self._heap)
        self._heap = [entry for entry in self._heap if not entry[2].cancelled]
        heapq.heapify(self._heap)
        self._cancelled = 0
        return before - len(self._heap)

    def _note_cancelled(self) -> None:
        self._cancelled += 1
        if self._cancelled >= self.compact_threshold and self._cancelled * 2 >= len(self._heap):
            dropped = self.compact()
            logger.debug("Compacted timer heap: %d cancelled entries dropped", dropped)

    def run_due(self) -> int:
        """Fire every live callback due at the clock's current time.

        Callbacks armed while this runs wait for the next call, even when
        they are already due.
        """
        now = self.clock.now()
        due: list[ManualTimerHandle] = []
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            handle.detach()
            if handle.cancelled:
                self._cancelled -= 1
            else:
                due.append(handle)

        fired = 0
        for handle in due:
            # An earlier callback may have cancelled this one.
            if handle.cancelled:
                continue
            handle.cancelled = True
            handle.callback()
            fired += 1
        if fired:
            logger.debug("Fired %d timer(s) at %s", fired, now.isoformat())
        return fired


# ---------------------------------------------------------------------------
# asyncio timers
# ---------------------------------------------------------------------------


class LoopTimers:
    """Arms callbacks on an asyncio event loop."""

    def __init__(self, clock: Clock, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.clock = clock
        self._loop = loop

    def call_at(self, when: datetime, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        delay = max(0.0, (when - self.clock.now()).total_seconds())
        return loop.call_later(delay, callback)

"""
Dispatch Gate for Chunk Generation.

Every chunk call of a request passes through one DispatchGate, which
enforces three rules before a call may start:

    1. No more than ``max_concurrent`` calls are active.
    2. Consecutive call starts are at least ``min_interval_s`` apart.
    3. No call starts while a rate-limit pause is in effect.

A 429 on any chunk pauses the whole gate (``pause``), not just the worker
that saw it. ``cancel`` wakes every waiter and makes further ``slot()``
calls raise DispatchCancelled; in-flight calls finish normally.

Usage:
    gate = DispatchGate(max_concurrent=2, min_interval_s=0.2)

    with gate.slot():
        audio = client.synthesize(...)

    added = gate.pause(60.0)    # upstream asked us to wait
    gate.cancel("auth failure") # fatal error elsewhere

Waiting is done outside the lock; the default sleep is an Event wait so
cancel() interrupts it immediately. Tests inject ``clock`` and ``sleep``.
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from tts_player.core.logging import debug, get_logger

_LOG = get_logger("tts-player.dispatch")

# Upper bound for a single wait step while polling for a free slot
_POLL_S = 0.05


class DispatchCancelled(Exception):
    """Raised by slot()/wait() once the gate has been cancelled."""


@dataclass
class DispatchStats:
    """Snapshot of gate counters."""
    max_concurrent: int
    current_active: int
    total_dispatched: int
    paused_for_s: float
    total_pause_s: float
    cancelled: bool


class DispatchGate:
    """Shared admission control for the chunk workers of one request."""

    def __init__(
        self,
        max_concurrent: int = 2,
        min_interval_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.min_interval_s = max(0.0, min_interval_s)

        self._clock = clock
        self._cancel_event = threading.Event()
        self._sleep = sleep or self._interruptible_sleep

        self._lock = threading.Lock()
        self._active = 0
        self._total_dispatched = 0
        self._last_start: Optional[float] = None
        self._paused_until = 0.0
        self._total_pause_s = 0.0
        self._cancel_reason = ""

    def _interruptible_sleep(self, seconds: float) -> None:
        self._cancel_event.wait(seconds)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def cancel_reason(self) -> str:
        return self._cancel_reason

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise DispatchCancelled(self._cancel_reason or "dispatch cancelled")

    def _delay_locked(self, now: float) -> float:
        """Seconds until a call may start; 0 when it may start now."""
        delay = max(0.0, self._paused_until - now)
        if self._last_start is not None and self.min_interval_s > 0:
            delay = max(delay, self._last_start + self.min_interval_s - now)
        if self._active >= self.max_concurrent:
            delay = max(delay, _POLL_S)
        return delay

    def acquire(self) -> None:
        """Block until a call may start, then take a slot."""
        while True:
            self._check_cancelled()
            with self._lock:
                now = self._clock()
                delay = self._delay_locked(now)
                if delay <= 0:
                    self._active += 1
                    self._total_dispatched += 1
                    self._last_start = now
                    return
            self._sleep(delay)

    def release(self) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)

    @contextmanager
    def slot(self) -> Iterator[None]:
        """
        Hold one dispatch slot for the duration of the block.

        Raises:
            DispatchCancelled: If the gate is (or becomes) cancelled while
                waiting.
        """
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def pause(self, seconds: float) -> float:
        """
        Hold all new dispatches until ``now + seconds``.

        Overlapping pauses do not stack: the deadline only moves forward.

        Returns:
            Seconds by which the deadline was actually extended.
        """
        if seconds <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            current = max(self._paused_until, now)
            target = now + seconds
            added = max(0.0, target - current)
            if added > 0:
                self._paused_until = target
                self._total_pause_s += added
        debug(_LOG, "gate_paused", seconds=seconds, added_s=round(added, 3))
        return added

    def wait(self, seconds: float) -> None:
        """Sleep for backoff; raises DispatchCancelled if cancelled."""
        self._check_cancelled()
        if seconds > 0:
            self._sleep(seconds)
        self._check_cancelled()

    def cancel(self, reason: str = "") -> None:
        """Refuse all further dispatches and wake waiters."""
        with self._lock:
            if not self._cancel_event.is_set():
                self._cancel_reason = reason
        self._cancel_event.set()
        debug(_LOG, "gate_cancelled", reason=reason)

    def stats(self) -> DispatchStats:
        with self._lock:
            return DispatchStats(
                max_concurrent=self.max_concurrent,
                current_active=self._active,
                total_dispatched=self._total_dispatched,
                paused_for_s=max(0.0, self._paused_until - self._clock()),
                total_pause_s=self._total_pause_s,
                cancelled=self._cancel_event.is_set(),
            )

"""Tests for the DispatchGate (concurrency, spacing, pauses, cancellation)."""
from __future__ import annotations

import threading
import time

import pytest

from conftest import FakeClock
from tts_player.tts.dispatch import DispatchCancelled, DispatchGate


class TestPause:
    """Rate-limit pauses."""

    def test_pause_returns_added_seconds(self):
        clock = FakeClock()
        gate = DispatchGate(max_concurrent=2, clock=clock, sleep=clock.sleep)
        assert gate.pause(60) == 60

    def test_overlapping_pauses_do_not_stack(self):
        """The deadline only moves forward."""
        clock = FakeClock()
        gate = DispatchGate(max_concurrent=2, clock=clock, sleep=clock.sleep)
        assert gate.pause(60) == 60
        assert gate.pause(30) == 0
        clock.sleep(10)
        assert gate.pause(60) == pytest.approx(10)
        assert gate.stats().total_pause_s == pytest.approx(70)

    def test_non_positive_pause_ignored(self):
        gate = DispatchGate()
        assert gate.pause(0) == 0.0
        assert gate.pause(-5) == 0.0

    def test_acquire_waits_out_pause(self):
        clock = FakeClock()
        gate = DispatchGate(max_concurrent=1, clock=clock, sleep=clock.sleep)
        start = clock()
        gate.pause(5)
        with gate.slot():
            assert clock() - start >= 5
        assert sum(clock.sleeps) == pytest.approx(5)


class TestSpacing:

    def test_min_interval_between_starts(self):
        clock = FakeClock()
        gate = DispatchGate(max_concurrent=2, min_interval_s=0.2, clock=clock, sleep=clock.sleep)
        with gate.slot():
            pass
        with gate.slot():
            pass
        assert clock.sleeps == [pytest.approx(0.2)]
        assert gate.stats().total_dispatched == 2

    def test_concurrency_bound(self):
        """No more than max_concurrent slots are held at once."""
        gate = DispatchGate(max_concurrent=2)
        peak = []
        active = [0]
        lock = threading.Lock()

        def work():
            with gate.slot():
                with lock:
                    active[0] += 1
                    peak.append(active[0])
                time.sleep(0.02)
                with lock:
                    active[0] -= 1

        threads = [threading.Thread(target=work) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert max(peak) <= 2
        assert gate.stats().total_dispatched == 6
        assert gate.stats().current_active == 0

    def test_invalid_max_concurrent(self):
        with pytest.raises(ValueError):
            DispatchGate(max_concurrent=0)


class TestCancel:

    def test_slot_after_cancel_raises(self):
        gate = DispatchGate()
        gate.cancel("AUTH")
        assert gate.cancelled
        assert gate.cancel_reason == "AUTH"
        with pytest.raises(DispatchCancelled):
            with gate.slot():
                pass

    def test_wait_after_cancel_raises(self):
        gate = DispatchGate()
        gate.cancel("AUTH")
        with pytest.raises(DispatchCancelled):
            gate.wait(1.0)

    def test_first_reason_kept(self):
        gate = DispatchGate()
        gate.cancel("AUTH")
        gate.cancel("UNKNOWN")
        assert gate.cancel_reason == "AUTH"

    def test_cancel_wakes_paused_waiter(self):
        """A worker waiting out a long pause is released by cancel()."""
        gate = DispatchGate(max_concurrent=1)
        gate.pause(30)
        outcome = []

        def waiter():
            try:
                gate.acquire()
                outcome.append("acquired")
            except DispatchCancelled:
                outcome.append("cancelled")

        t = threading.Thread(target=waiter)
        t.start()
        time.sleep(0.05)
        gate.cancel("shutdown")
        t.join(timeout=2)

        assert not t.is_alive()
        assert outcome == ["cancelled"]

"""
Tests for the Clock implementations.

Covers:
  - Timers fire once, measured from arming
  - cancel() before and after firing
  - ManualClock ordering for equal expiries
  - LoopClock against a real event loop
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from gcprobe.diagnostics.clock import LoopClock, ManualClock


class TestManualClock:
    def test_now_starts_at_given_time(self):
        assert ManualClock().now() == 0.0
        assert ManualClock(start=12.5).now() == 12.5

    def test_timer_fires_once_after_duration(self):
        clock = ManualClock()
        fired: list[float] = []
        deadline = clock.after(2.0, lambda: fired.append(clock.now()))

        clock.advance(1.999)
        assert fired == []
        assert deadline.pending

        clock.advance(0.001)
        assert fired == [pytest.approx(2.0)]
        assert deadline.fired

        clock.advance(10.0)
        assert len(fired) == 1

    def test_duration_measured_from_arming(self):
        clock = ManualClock()
        clock.advance(5.0)
        fired: list[float] = []
        clock.after(1.0, lambda: fired.append(clock.now()))
        clock.advance(0.5)
        assert fired == []
        clock.advance(0.5)
        assert fired == [pytest.approx(6.0)]

    def test_cancel_prevents_firing(self):
        clock = ManualClock()
        fired: list[int] = []
        deadline = clock.after(1.0, lambda: fired.append(1))
        deadline.cancel()
        clock.advance(2.0)
        assert fired == []
        assert deadline.cancelled
        assert not deadline.fired

    def test_cancel_after_fire_is_noop(self):
        clock = ManualClock()
        deadline = clock.after(1.0, lambda: None)
        clock.advance(1.0)
        deadline.cancel()
        deadline.cancel()
        assert deadline.fired
        assert not deadline.cancelled

    def test_equal_expiry_fires_in_arming_order(self):
        clock = ManualClock()
        order: list[str] = []
        clock.after(3.0, lambda: order.append("first"))
        clock.after(3.0, lambda: order.append("second"))
        clock.after(1.0, lambda: order.append("early"))
        clock.advance(3.0)
        assert order == ["early", "first", "second"]

    def test_timer_armed_inside_callback_fires_within_window(self):
        clock = ManualClock()
        fired: list[float] = []

        def chain() -> None:
            clock.after(1.0, lambda: fired.append(clock.now()))

        clock.after(1.0, chain)
        clock.advance(2.5)
        assert fired == [pytest.approx(2.0)]
        assert clock.now() == pytest.approx(2.5)

    def test_run_until_idle_skips_cancelled(self):
        clock = ManualClock()
        fired: list[int] = []
        clock.after(1.0, lambda: fired.append(1))
        clock.after(500.0, lambda: fired.append(2)).cancel()
        clock.run_until_idle()
        assert fired == [1]
        assert clock.now() == pytest.approx(1.0)
        assert clock.pending_count == 0

    def test_cannot_move_backwards(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1.0)


class TestLoopClock:
    @pytest.mark.asyncio
    async def test_fires_on_running_loop(self):
        clock = LoopClock()
        event = asyncio.Event()
        start = clock.now()
        deadline = clock.after(0.01, event.set)
        await asyncio.wait_for(event.wait(), timeout=1.0)
        assert deadline.fired
        assert clock.now() - start >= 0.0

    @pytest.mark.asyncio
    async def test_cancel_before_expiry(self):
        clock = LoopClock()
        fired: list[int] = []
        deadline = clock.after(0.01, lambda: fired.append(1))
        deadline.cancel()
        await asyncio.sleep(0.03)
        assert fired == []
        assert deadline.cancelled

    @pytest.mark.asyncio
    async def test_now_is_monotonic(self):
        clock = LoopClock()
        first = clock.now()
        await asyncio.sleep(0)
        assert clock.now() >= first

    @pytest.mark.asyncio
    async def test_arm_from_worker_thread_wakes_loop(self):
        loop = asyncio.get_running_loop()
        clock = LoopClock(loop)
        fired: asyncio.Future[float] = loop.create_future()
        armed_at: list[float] = []

        def _arm() -> None:
            armed_at.append(clock.now())
            clock.after(0.05, lambda: fired.set_result(clock.now()))

        # Nothing else is scheduled, so only the arming itself can wake the loop
        threading.Timer(0.05, _arm).start()
        fired_at = await asyncio.wait_for(fired, timeout=1.0)
        assert fired_at - armed_at[0] >= 0.04

    @pytest.mark.asyncio
    async def test_cancel_from_worker_thread(self):
        clock = LoopClock(asyncio.get_running_loop())
        fired: list[int] = []
        deadline = clock.after(0.05, lambda: fired.append(1))

        worker = threading.Thread(target=deadline.cancel)
        worker.start()
        worker.join()
        await asyncio.sleep(0.1)

        assert fired == []
        assert deadline.cancelled

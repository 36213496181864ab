"""Unit tests for core/supervisor.py -- ConnectionSupervisor backoff and lifecycle.

Covers:
- backoff_delay() doubles from the base and caps at the ceiling
- three failed attempts yield base, 2x base, 4x base
- a success resets the failure counter; the next failure starts at base again
- a hung connect is bounded by connect_timeout
- run() keeps retrying through failures and stop() cancels the loop
"""

import asyncio
import time

import pytest

from core.supervisor import ConnectionSupervisor, backoff_delay


class FlakyConnect:
    """Blocking connect callable driven by a script of True (ok) / False (fail)."""

    def __init__(self, script: list[bool]) -> None:
        self.script = list(script)
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1
        ok = self.script.pop(0) if self.script else True
        if not ok:
            raise ConnectionError("connection refused")


class TestBackoffDelay:
    @pytest.mark.parametrize(
        ("failures", "expected"),
        [(1, 5), (2, 10), (3, 20), (4, 40), (5, 60), (9, 60)],
    )
    def test_doubles_then_caps(self, failures, expected):
        assert backoff_delay(failures, base=5, ceiling=60) == expected

    def test_no_failures_no_delay(self):
        assert backoff_delay(0, base=5, ceiling=60) == 0


class TestAttempt:
    def test_three_failures_then_reset(self):
        connect = FlakyConnect([False, False, False, True, False])
        supervisor = ConnectionSupervisor(connect, base_delay=5, max_delay=60, health_interval=30)

        async def scenario() -> list[float]:
            return [await supervisor.attempt() for _ in range(5)]

        delays = asyncio.run(scenario())

        assert delays[:3] == [5, 10, 20]
        assert delays[3] == 30  # success -> health interval
        assert delays[4] == 5  # first failure after success starts at base again
        assert supervisor.failures == 1
        assert supervisor.connected is False

    def test_success_marks_connected(self):
        supervisor = ConnectionSupervisor(FlakyConnect([True]))
        asyncio.run(supervisor.attempt())
        assert supervisor.connected is True
        assert supervisor.failures == 0

    def test_delay_capped_at_ceiling(self):
        supervisor = ConnectionSupervisor(FlakyConnect([False] * 6), base_delay=5, max_delay=12)

        async def scenario() -> list[float]:
            return [await supervisor.attempt() for _ in range(4)]

        assert asyncio.run(scenario()) == [5, 10, 12, 12]

    def test_hung_connect_times_out(self):
        supervisor = ConnectionSupervisor(lambda: time.sleep(0.5), connect_timeout=0.05, base_delay=1)
        delay = asyncio.run(supervisor.attempt())
        assert delay == 1
        assert supervisor.failures == 1
        assert supervisor.connected is False


class TestRunLoop:
    def test_retries_until_connected_then_stops(self):
        connect = FlakyConnect([False, False, True])
        slept: list[float] = []

        async def fake_sleep(delay: float) -> None:
            slept.append(delay)
            await asyncio.sleep(0)

        supervisor = ConnectionSupervisor(connect, base_delay=5, max_delay=60, health_interval=30, sleep=fake_sleep)

        async def scenario() -> None:
            supervisor.start()
            for _ in range(200):
                if supervisor.connected:
                    break
                await asyncio.sleep(0.01)
            await supervisor.stop()

        asyncio.run(scenario())

        assert slept[:2] == [5, 10]
        assert connect.calls >= 3
        # stop() drops the connected flag along with the task
        assert supervisor.connected is False

    def test_stop_without_start_is_noop(self):
        supervisor = ConnectionSupervisor(FlakyConnect([]))
        asyncio.run(supervisor.stop())

    def test_stop_survives_swallowed_cancel(self):
        """A cancel eaten inside the loop (as wait_for can on 3.10/3.11) must not hang stop()."""
        swallowed: list[bool] = []

        async def cancel_eating_sleep(delay: float) -> None:
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                swallowed.append(True)

        supervisor = ConnectionSupervisor(FlakyConnect([]), health_interval=30, sleep=cancel_eating_sleep)

        async def scenario() -> None:
            supervisor.start()
            for _ in range(200):
                if supervisor.connected:
                    break
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.01)
            await asyncio.wait_for(supervisor.stop(), timeout=5)

        asyncio.run(scenario())

        assert swallowed == [True]
        assert supervisor._task is None
        assert supervisor.connected is False

    @pytest.mark.parametrize("ticks", [0, 1, 2, 5, 10, 25])
    def test_stop_while_connects_are_completing(self, ticks):
        async def yield_sleep(delay: float) -> None:
            await asyncio.sleep(0)

        supervisor = ConnectionSupervisor(FlakyConnect([]), sleep=yield_sleep)

        async def scenario() -> None:
            supervisor.start()
            for _ in range(ticks):
                await asyncio.sleep(0)
            await asyncio.wait_for(supervisor.stop(), timeout=5)

        asyncio.run(scenario())
        assert supervisor._task is None

    def test_restart_after_stop(self):
        supervisor = ConnectionSupervisor(FlakyConnect([]), health_interval=30)

        async def scenario() -> None:
            for _ in range(2):
                supervisor.start()
                for _ in range(200):
                    if supervisor.connected:
                        break
                    await asyncio.sleep(0.01)
                assert supervisor.connected is True
                await asyncio.wait_for(supervisor.stop(), timeout=5)

        asyncio.run(scenario())

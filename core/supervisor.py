"""
core/supervisor.py -- Background connection supervisor for the credential store.

The supervisor owns one asyncio task that keeps trying to reach the store:

    delay = await attempt()      # one bounded connection attempt
    await asyncio.sleep(delay)   # backoff after failure, health interval after success

Backoff after the n-th consecutive failure is base * 2**(n-1), capped at the
ceiling (5s, 10s, 20s, 40s, 60s, 60s, ... with the defaults). There is no
maximum retry count: a long-running service should heal itself after a
transient network or DNS outage. A successful attempt resets the failure
counter, so the next outage starts again at the base delay.

Request handlers never wait on the supervisor. They read `connected` and fail
fast with Unavailable while it is False.

Lifecycle mirrors the OTP sweep loop in api/main.py: start() in lifespan
startup, stop() in lifespan shutdown. stop() sets a flag the loop checks
after every attempt and keeps cancelling until the task is done, so a
cancel lost inside wait_for cannot leave the loop running.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or notify/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger("credgate.db")

_STOP_POLL_INTERVAL = 0.5


def backoff_delay(failures: int, base: float, ceiling: float) -> float:
    """Return the retry delay after `failures` consecutive failed attempts."""
    if failures < 1:
        return 0.0
    return min(base * 2 ** (failures - 1), ceiling)


class ConnectionSupervisor:
    """Establish and keep alive the connection behind a blocking `connect` callable.

    Usage:
        supervisor = ConnectionSupervisor(store.connect)
        supervisor.start()
        ...
        await supervisor.stop()

    `connect` must raise on failure. It runs in a worker thread so a slow
    driver cannot stall the event loop; connect_timeout bounds each attempt.
    """

    def __init__(
        self,
        connect: Callable[[], object],
        connect_timeout: float = 5.0,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
        health_interval: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._connect = connect
        self.connect_timeout = connect_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.health_interval = health_interval
        self._sleep = sleep
        self.failures = 0
        self.connected = False
        self._task: asyncio.Task | None = None
        self._stopping = False

    async def attempt(self) -> float:
        """Run one connection attempt and return the seconds to wait before the next."""
        try:
            await asyncio.wait_for(asyncio.to_thread(self._connect), timeout=self.connect_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            self.connected = False
            delay = backoff_delay(self.failures, self.base_delay, self.max_delay)
            logger.error("Credential store connection failed: %s", exc or type(exc).__name__)
            logger.info("Retrying connection in %.0f seconds (attempt %d)", delay, self.failures + 1)
            return delay

        if not self.connected:
            logger.info("Credential store connected")
        self.failures = 0
        self.connected = True
        return self.health_interval

    async def run(self) -> None:
        """Attempt, sleep, repeat -- until stop() is called."""
        while not self._stopping:
            delay = await self.attempt()
            if self._stopping:
                break
            await self._sleep(delay)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop the loop and wait for the task to finish.

        A cancel that lands while wait_for is completing a finished connect
        can be swallowed (Python < 3.12), so the stop flag is set first and
        the task is re-cancelled until it is actually done.
        """
        if self._task is None:
            return
        task = self._task
        self._stopping = True
        while not task.done():
            task.cancel()
            await asyncio.wait({task}, timeout=_STOP_POLL_INTERVAL)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Connection supervisor exited with an error: %s", task.exception())
        self._task = None
        self.connected = False

"""
Heartbeat publisher for liveness reporting.

While the connection manager is connected, a status message is published on
a fixed interval. The timer is an owned handle with these guarantees:
- at most one timer is active at any time
- start() always stops the previous timer before creating a new one
- stop() takes effect immediately; no tick runs after it returns
"""

import asyncio
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel


SleepFunc = Callable[[float], Awaitable[None]]


class HeartbeatPublisher:
    """Periodic tick driver backed by a single asyncio task."""

    COMPONENT = "HeartbeatPublisher"

    def __init__(
        self,
        interval_seconds: float,
        on_tick: Callable[[], object],
        sleep: Optional[SleepFunc] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the heartbeat publisher.

        Args:
            interval_seconds: Time between ticks
            on_tick: Called once per interval while active
            sleep: Awaitable sleep used between ticks (defaults to asyncio.sleep)
            logger: Optional audit logger
        """
        if interval_seconds <= 0:
            raise ValueError("Heartbeat interval must be positive")

        self._interval_seconds = interval_seconds
        self._on_tick = on_tick
        self._sleep = sleep or asyncio.sleep
        self._logger = logger
        self._task: Optional[asyncio.Task] = None
        self._tick_count = 0

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        """Number of ticks fired since construction."""
        return self._tick_count

    def start(self) -> None:
        """Start ticking, replacing any previous timer. Must run inside an event loop."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._log(LogLevel.INFO, "Started heartbeat", {"interval_seconds": self._interval_seconds})

    def stop(self) -> None:
        """Stop ticking. Safe to call when not active."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            self._log(LogLevel.INFO, "Stopped heartbeat", {})

    async def _run(self) -> None:
        task = asyncio.current_task()
        while True:
            await self._sleep(self._interval_seconds)
            if self._task is not task:
                # Replaced or stopped while sleeping
                return
            self._tick_count += 1
            try:
                self._on_tick()
            except Exception as e:
                if self._logger:
                    self._logger.log_error(self.COMPONENT, "Heartbeat tick failed", error=e)

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

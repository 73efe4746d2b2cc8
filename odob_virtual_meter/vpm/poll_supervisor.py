"""Poll supervisor: keeps one power source fresh and halts when it goes silent."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .const import DEFAULT_TIMEOUT_THRESHOLD
from .exceptions import (
    FatalSourceError,
    SourceNotResponding,
    TransientFetchError,
    WatchdogExpired,
)
from .models import SourceStatus

logger = logging.getLogger(__name__)

# Fetches one raw body from the source, raising TransientFetchError on failure
Fetcher = Callable[[], Awaitable[Any]]
# Parses a body and stores it in the shared state
ReadingHandler = Callable[[Any], None]


class PollSupervisor:
    """Polls one source on a fixed cadence and escalates when it fails.

    Every completed fetch, successful or not, re-arms a watchdog timer and
    schedules the next fetch ``delay`` seconds later. The source is given up
    on, and ``run()`` raises, when:

    - more than ``failure_threshold`` fetches in a row failed
      (SourceNotResponding), or
    - no fetch completed at all within ``watchdog_timeout`` seconds, e.g.
      because the transport hangs (WatchdogExpired).

    There is no retry after that: stale data is worse than no data.
    """

    def __init__(
        self,
        fetch: Fetcher,
        on_reading: ReadingHandler,
        status: SourceStatus,
        *,
        delay: float,
        watchdog_timeout: float,
        failure_threshold: int = DEFAULT_TIMEOUT_THRESHOLD,
    ) -> None:
        self._fetch = fetch
        self._on_reading = on_reading
        self.status = status
        self._delay = delay
        self._watchdog_timeout = watchdog_timeout
        self._failure_threshold = failure_threshold

        self._task: asyncio.Task | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._error: FatalSourceError | None = None

    @property
    def name(self) -> str:
        return self.status.name

    @property
    def error(self) -> FatalSourceError | None:
        """The fatal error the supervisor stopped with, if any."""
        return self._error

    def start(self) -> asyncio.Task:
        """Start polling in a background task. The first fetch is immediate."""
        self._task = asyncio.create_task(self.run(), name=f"poll:{self.name}")
        return self._task

    async def run(self) -> None:
        """Poll until the source is given up on.

        Raises:
            SourceNotResponding: Too many consecutive failures.
            WatchdogExpired: No fetch completed within the network timeout.
            MalformedResponse: The source answered with an unusable body.
        """
        self._task = asyncio.current_task()
        logger.info(
            "Polling %s every %.1fs (watchdog %.0fs)",
            self.name,
            self._delay,
            self._watchdog_timeout,
        )
        self._arm_watchdog()
        try:
            while self._error is None:
                await self.poll_once()
                if self._error is not None:
                    break
                self._arm_watchdog()
                await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            if self._error is None:
                raise
            # The cancel came from terminate(), replace it with the error
            asyncio.current_task().uncancel()
        finally:
            self._cancel_watchdog()

        raise self._error

    async def poll_once(self) -> None:
        """Fetch once and hand the outcome to the completion handlers."""
        try:
            body = await self._fetch()
        except TransientFetchError as e:
            self.handle_failure(e)
        else:
            self.handle_success(body)

    def handle_success(self, body: Any) -> None:
        self._cancel_watchdog()
        self.status.consecutive_failures = 0
        self.status.stale = False
        self._on_reading(body)

    def handle_failure(self, error: TransientFetchError) -> None:
        self.status.consecutive_failures += 1
        self.status.stale = True
        logger.warning(
            "Fetch from %s failed (%d in a row): %s",
            self.name,
            self.status.consecutive_failures,
            error,
        )
        if self.status.consecutive_failures > self._failure_threshold:
            self.terminate(
                SourceNotResponding(
                    self.name,
                    f"{self.name} did not answer {self.status.consecutive_failures} "
                    "times in a row",
                )
            )

    def terminate(self, error: FatalSourceError) -> None:
        """Give up on the source. Only the first call has an effect."""
        if self._error is not None:
            return
        self._error = error
        self._cancel_watchdog()
        logger.critical("Giving up on %s: %s", self.name, error)

        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    def _arm_watchdog(self) -> None:
        self._cancel_watchdog()
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self._watchdog_timeout, self._on_watchdog_expired)

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _on_watchdog_expired(self) -> None:
        self._watchdog = None
        self.terminate(
            WatchdogExpired(
                self.name,
                f"No response from {self.name} for {self._watchdog_timeout:.0f} seconds",
            )
        )

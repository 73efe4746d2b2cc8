"""Reading publisher: serves each controller its virtual meter value."""

from __future__ import annotations

import logging
import math
from typing import Any

from aiohttp import web

from .allocation import AllocationParams, allocate
from .const import LOCAL_POWER_FIELD, READING_PATH, SHELLY_EM_COMPONENT
from .drift import DriftCompensator
from .models import GlobalState, ResponseFormat

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ReadingPublisher:
    """Computes virtual meter values from the current state snapshot.

    Reading has no side effects: two reads without a state update in
    between return the same value.
    """

    def __init__(
        self,
        state: GlobalState,
        params: AllocationParams,
        drift: DriftCompensator,
        response_format: ResponseFormat = ResponseFormat.SHELLY,
    ) -> None:
        self._state = state
        self._params = params
        self._drift = drift
        self._format = response_format

    def value(self, index: int) -> int:
        raw = allocate(self._state, index, self._params)
        raw += self._drift.correction(self._state, index)
        return round_half_up(raw)

    def body(self, index: int) -> dict[str, Any]:
        value = self.value(index)
        if self._format == ResponseFormat.PWR:
            return {"PWR": value}
        return {SHELLY_EM_COMPONENT: {LOCAL_POWER_FIELD: value}}


class ReadingServer:
    """aiohttp server exposing ``/pwr1`` .. ``/pwrN``."""

    def __init__(self, publisher: ReadingPublisher, count: int) -> None:
        self._publisher = publisher
        self.app = web.Application()
        for index in range(count):
            self.app.router.add_get(READING_PATH.format(index + 1), self._make_handler(index))
        self._runner: web.AppRunner | None = None

    def _make_handler(self, index: int):
        """Create a request handler bound to one controller."""

        async def _handler(request: web.Request) -> web.Response:
            body = self._publisher.body(index)
            logger.debug("Reading for controller %d: %s", index, body)
            return web.json_response(body)

        return _handler

    async def start(self, host: str, port: int) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info("Serving virtual meters on http://%s:%d", host, port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

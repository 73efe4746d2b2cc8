"""Power sources: feed net power and controller power into the shared state."""

from __future__ import annotations

import json
import logging
from typing import Any

import aiohttp

from .config import AppConfig
from .const import (
    CONTROLLER_STATUS_URL,
    HTTP_REQUEST_TIMEOUT,
    LOCAL_POWER_FIELD,
    ONE_MINUTE,
    SHELLY_EM_COMPONENT,
)
from .drift import DriftCompensator
from .exceptions import MalformedResponse, TransientFetchError
from .models import ControllerReading, GlobalState, NetPowerSource
from .parsing import extract_number, parse_controller_status, split_path
from .poll_supervisor import PollSupervisor

logger = logging.getLogger(__name__)


async def fetch_json(url: str) -> Any:
    """GET a JSON document.

    Raises:
        TransientFetchError: Transport error, timeout or non-200 status.
        MalformedResponse: The body is not JSON.
    """
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url, timeout=aiohttp.ClientTimeout(total=HTTP_REQUEST_TIMEOUT)
            ) as resp:
                if resp.status != 200:
                    raise TransientFetchError(f"GET {url} returned {resp.status}")
                text = await resp.text()
    except (aiohttp.ClientError, TimeoutError) as e:
        raise TransientFetchError(f"GET {url} failed: {e}") from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse(url, f"body is not JSON: {e}") from e


class ControllerSource:
    """Polled livedata of one oDoB controller."""

    def __init__(self, state: GlobalState, drift: DriftCompensator, index: int) -> None:
        self._state = state
        self._drift = drift
        self._index = index
        spec = state.controllers[index].spec
        self.url = CONTROLLER_STATUS_URL.format(spec.address, spec.serial)

    async def fetch(self) -> Any:
        return await fetch_json(self.url)

    def on_reading(self, body: Any) -> None:
        reading = parse_controller_status(body)
        self._state.update_controller(self._index, reading)
        self._drift.record(self._state, self._index)
        logger.debug(
            "Controller %d: power=%.0fW limit=%.0fW aux=%.0fW total=%.0fW",
            self._index,
            reading.power,
            reading.limit,
            reading.auxiliary_power,
            self._state.total_generated_power,
        )


class PushControllerSource:
    """AC power of one controller, pushed over MQTT instead of polled.

    The topic carries the delivered power only, so the commanded limit is
    taken to equal it and no set/get mismatch is sampled.
    """

    def __init__(self, state: GlobalState, index: int) -> None:
        self._state = state
        self._index = index

    async def on_value(self, topic: str, payload: str) -> None:
        try:
            power = float(payload)
        except ValueError:
            logger.warning("Invalid controller power on %s: %s", topic, payload)
            return
        self._state.update_controller(
            self._index, ControllerReading(power=power, limit=power)
        )
        self._state.controllers[self._index].status.stale = False
        logger.debug(
            "Controller %d: pushed power=%.0fW total=%.0fW",
            self._index,
            power,
            self._state.total_generated_power,
        )


class HttpNetPowerSource:
    """Net power polled from any JSON endpoint, located by a field path."""

    def __init__(self, state: GlobalState, url: str, json_path: str) -> None:
        self._state = state
        self.url = url
        self._path = split_path(json_path)

    async def fetch(self) -> Any:
        return await fetch_json(self.url)

    def on_reading(self, body: Any) -> None:
        self._state.update_net_power(extract_number(body, self._path))


class PushNetPowerSource:
    """Net power pushed to us over MQTT."""

    def __init__(self, state: GlobalState) -> None:
        self._state = state

    async def on_value(self, topic: str, payload: str) -> None:
        """Handle a plain numeric payload."""
        try:
            value = float(payload)
        except ValueError:
            logger.warning("Invalid net power on %s: %s", topic, payload)
            return
        self._state.update_net_power(value)

    async def on_status_event(self, topic: str, payload: str) -> None:
        """Handle a JSON status event from the metering device."""
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON status event on %s", topic)
            return
        self.apply_status_event(event)

    def apply_status_event(self, event: Any) -> bool:
        """Take the net power from a status event, if it carries one.

        Accepts ``{"delta": {"total_act_power": W}}`` as well as a Shelly
        ``NotifyStatus`` notification with the value under ``params/em:0``.
        Returns whether the net power was updated.
        """
        if not isinstance(event, dict):
            return False
        delta = event.get("delta")
        if delta is None:
            delta = (event.get("params") or {}).get(SHELLY_EM_COMPONENT)
        if not isinstance(delta, dict) or LOCAL_POWER_FIELD not in delta:
            return False
        value = delta[LOCAL_POWER_FIELD]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning("Ignoring non-numeric %s: %r", LOCAL_POWER_FIELD, value)
            return False
        self._state.update_net_power(value)
        return True


def build_supervisors(
    config: AppConfig, state: GlobalState, drift: DriftCompensator
) -> list[PollSupervisor]:
    """One supervisor per polled controller, plus one for an HTTP net power source."""
    options = {
        "delay": config.poll_delay_seconds,
        "watchdog_timeout": config.timeout_network_minutes * ONE_MINUTE,
        "failure_threshold": config.timeout_threshold,
    }

    supervisors = []
    for index, controller in enumerate(state.controllers):
        if controller.spec.topic:
            continue
        source = ControllerSource(state, drift, index)
        supervisors.append(
            PollSupervisor(source.fetch, source.on_reading, controller.status, **options)
        )

    if config.net_power_source == NetPowerSource.HTTP:
        source = HttpNetPowerSource(state, config.net_power_url, config.net_power_json_path)
        supervisors.append(
            PollSupervisor(source.fetch, source.on_reading, state.net_status, **options)
        )

    return supervisors

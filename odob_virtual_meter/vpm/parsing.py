"""Field extraction from the JSON bodies of power sources."""

from __future__ import annotations

from typing import Any

from .const import (
    AUXILIARY_ENABLED_PATH,
    AUXILIARY_POWER_PATH,
    AUXILIARY_SECTION,
    CONTROLLER_LIMIT_PATH,
    CONTROLLER_POWER_PATH,
)
from .exceptions import MalformedResponse
from .models import ControllerReading


def split_path(path: str) -> list[str]:
    """Split a slash separated field path, ignoring empty segments."""
    return [part for part in path.split("/") if part]


def extract_field(body: Any, path: str | list[str]) -> Any:
    """Walk ``body`` along a slash separated path.

    Numeric segments index into lists, so ``inverters/0/AC/0/Power/v``
    resolves ``body["inverters"][0]["AC"][0]["Power"]["v"]``.

    Raises:
        MalformedResponse: A segment does not exist in the body.
    """
    parts = split_path(path) if isinstance(path, str) else path
    joined = "/".join(parts)
    node = body
    for part in parts:
        if isinstance(node, dict):
            if part not in node:
                raise MalformedResponse(joined, f"missing key '{part}'")
            node = node[part]
        elif isinstance(node, list):
            try:
                node = node[int(part)]
            except ValueError as e:
                raise MalformedResponse(joined, f"'{part}' is not a list index") from e
            except IndexError as e:
                raise MalformedResponse(joined, f"index {part} out of range") from e
        else:
            raise MalformedResponse(joined, f"cannot descend into {type(node).__name__}")
    return node


def extract_number(body: Any, path: str | list[str]) -> float:
    """Like extract_field, but the value must be numeric."""
    value = extract_field(body, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        joined = path if isinstance(path, str) else "/".join(path)
        raise MalformedResponse(joined, f"expected a number, got {value!r}")
    return float(value)


def parse_controller_status(body: Any) -> ControllerReading:
    """Parse an openDTU-onBattery ``/api/livedata/status`` body.

    The ``huawei`` section only exists on builds with the charger
    integration; without it there is no auxiliary source.
    """
    power = extract_number(body, CONTROLLER_POWER_PATH)
    limit = extract_number(body, CONTROLLER_LIMIT_PATH)

    auxiliary = 0.0
    if isinstance(body, dict) and AUXILIARY_SECTION in body:
        if extract_field(body, AUXILIARY_ENABLED_PATH):
            auxiliary = extract_number(body, AUXILIARY_POWER_PATH)

    return ControllerReading(power=power, limit=limit, auxiliary_power=auxiliary)

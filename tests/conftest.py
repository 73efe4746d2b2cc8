"""Shared fixtures for the virtual meter tests."""

from __future__ import annotations

import pytest

from vpm.allocation import AllocationParams
from vpm.config import AppConfig, ControllerConfig
from vpm.models import AllocationPolicy, ControllerReading, GlobalState


def make_config(*nominal_powers: float, **overrides) -> AppConfig:
    """Build a config with one controller per nominal power."""
    controllers = [
        ControllerConfig(
            address=f"192.168.1.{10 + i}",
            serial=f"11618377341{i}",
            nominal_power=power,
        )
        for i, power in enumerate(nominal_powers)
    ]
    overrides.setdefault("net_power_url", "http://meter.local/status")
    return AppConfig(controllers=controllers, **overrides)


def make_state(*nominal_powers: float, target: float = 0.0) -> GlobalState:
    config = make_config(*nominal_powers)
    return GlobalState.from_specs(config.controller_specs(), target)


def set_power(state: GlobalState, index: int, power: float, limit: float | None = None,
              auxiliary: float = 0.0) -> None:
    state.update_controller(
        index,
        ControllerReading(
            power=power,
            limit=power if limit is None else limit,
            auxiliary_power=auxiliary,
        ),
    )


@pytest.fixture
def cascade_state() -> GlobalState:
    return make_state(1500, 2250)


@pytest.fixture
def parallel_params() -> AllocationParams:
    return AllocationParams(
        policy=AllocationPolicy.PARALLEL,
        split_threshold=115,
        split_weights=(0.412, 0.588),
    )


@pytest.fixture
def livedata() -> dict:
    """A trimmed openDTU-onBattery /api/livedata/status body."""
    return {
        "inverters": [
            {
                "serial": "116183773414",
                "limit_absolute": 400.0,
                "AC": {"0": {"Power": {"v": 380.5, "u": "W"}}},
            }
        ],
        "huawei": {"enabled": False},
    }

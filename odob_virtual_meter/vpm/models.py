"""Data models for the Virtual Power Meter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AllocationPolicy(Enum):
    """How the grid power is split across the controllers."""

    CASCADE = "cascade"
    PARALLEL = "parallel"
    PROPORTIONAL = "proportional"


class NetPowerSource(Enum):
    """Where the net (grid) power reading comes from."""

    LOCAL = "local"  # Status events pushed by the metering device
    HTTP = "http"  # Polled JSON endpoint
    MQTT = "mqtt"  # Numeric payload on a topic


class ResponseFormat(Enum):
    """Body layout served to the controllers."""

    SHELLY = "shelly"  # {"em:0": {"total_act_power": W}}
    PWR = "pwr"  # {"PWR": W}


@dataclass(frozen=True)
class ControllerSpec:
    """Static description of one oDoB controller, fixed at startup."""

    index: int
    name: str
    address: str
    serial: str
    nominal_power: float  # Watts
    topic: str = ""  # Pushed AC power topic, replaces polling when set
    min_required_power: float | None = None  # Watts
    power_share: float = 0.0  # Proportional weight
    cumulative_start_power: float = 0.0  # Sum of nominal power of earlier controllers


@dataclass
class SourceStatus:
    """Health of one polled power source."""

    name: str
    consecutive_failures: int = 0
    stale: bool = True  # No usable reading yet, or the last fetch failed


@dataclass
class ControllerReading:
    """One parsed livedata response of a controller."""

    power: float  # Delivered AC power (W)
    limit: float  # Last commanded absolute limit (W)
    auxiliary_power: float = 0.0  # Huawei charger power, 0 when disabled


@dataclass
class ControllerState:
    """Mutable runtime state of one controller."""

    spec: ControllerSpec
    last_generated_power: float = 0.0
    last_commanded_limit: float = 0.0
    auxiliary_power: float = 0.0
    mismatch_sample: float = 0.0  # Bounded set/get correction (W)
    sample_counter: int = 0  # Updates since the last mismatch recompute
    status: SourceStatus = field(init=False)

    def __post_init__(self) -> None:
        self.status = SourceStatus(name=self.spec.name)

    @property
    def cumulative_start_power(self) -> float:
        return self.spec.cumulative_start_power


@dataclass
class GlobalState:
    """Everything the allocation reads, shared by all sources.

    Only mutated from the event loop, so no locking is needed.
    """

    controllers: list[ControllerState]
    target_grid_consumption: float = 0.0
    net_power: float = 0.0  # Positive = importing from grid
    total_generated_power: float = 0.0
    net_status: SourceStatus = field(
        default_factory=lambda: SourceStatus(name="net power")
    )

    @classmethod
    def from_specs(
        cls, specs: list[ControllerSpec], target_grid_consumption: float = 0.0
    ) -> GlobalState:
        return cls(
            controllers=[ControllerState(spec=s) for s in specs],
            target_grid_consumption=target_grid_consumption,
        )

    @property
    def last_index(self) -> int:
        return len(self.controllers) - 1

    def update_net_power(self, value: float) -> None:
        self.net_power = float(value)

    def update_controller(self, index: int, reading: ControllerReading) -> None:
        """Store a controller reading, keeping the total in step."""
        controller = self.controllers[index]
        self.total_generated_power += reading.power - controller.last_generated_power
        controller.last_generated_power = reading.power
        controller.last_commanded_limit = reading.limit
        controller.auxiliary_power = reading.auxiliary_power

    def recompute_total(self) -> float:
        return sum(c.last_generated_power for c in self.controllers)

    def auxiliary_power(self, index: int) -> float:
        return self.controllers[index].auxiliary_power

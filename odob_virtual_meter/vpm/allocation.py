"""Allocation: split the grid power into one virtual meter value per controller.

Every policy is a pure function of the current ``GlobalState`` snapshot. The
value returned is what the controller's virtual meter should read, i.e. the
power the controller should add (positive) or shed (negative) next.

Cascade
    Controllers are filled in configuration order. Each one sees the real
    grid power plus what all *other* controllers produce, minus the nominal
    power of the controllers before it. The last controller is never asked to
    go below zero output.

Parallel
    Two controllers share the load by fixed weights once it exceeds
    ``split_threshold``; below it controller 0 carries everything and
    controller 1 is pushed to its minimum. While an auxiliary source (a
    charger at controller 0's site) is active, controller 1 is also pushed
    to its minimum. The auxiliary reading and the split are taken from the
    same snapshot.

Proportional
    Every controller gets a fixed share of the grid power deviation.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from .const import DEFAULT_SPLIT_THRESHOLD, DEFAULT_SPLIT_WEIGHTS
from .models import AllocationPolicy, GlobalState


@dataclass(frozen=True)
class AllocationParams:
    """Policy parameters, fixed at startup."""

    policy: AllocationPolicy = AllocationPolicy.CASCADE
    split_threshold: float = DEFAULT_SPLIT_THRESHOLD
    split_weights: tuple[float, ...] = DEFAULT_SPLIT_WEIGHTS


Allocator = Callable[[GlobalState, int, AllocationParams], float]


def _min_required_floor(state: GlobalState, index: int, value: float) -> float:
    controller = state.controllers[index]
    min_required = controller.spec.min_required_power
    if min_required is None:
        return value
    return max(min_required - controller.last_generated_power, value)


def cascade(state: GlobalState, index: int, params: AllocationParams) -> float:
    controller = state.controllers[index]
    power_of_others = state.total_generated_power - controller.last_generated_power
    result = (
        state.net_power
        - state.target_grid_consumption
        + power_of_others
        - controller.cumulative_start_power
    )
    if index == state.last_index:
        result = max(-controller.last_generated_power, result)
    return _min_required_floor(state, index, result)


def parallel(state: GlobalState, index: int, params: AllocationParams) -> float:
    powersplit = (
        state.net_power - state.target_grid_consumption + state.total_generated_power
    )
    above_threshold = powersplit > params.split_threshold
    auxiliary = state.auxiliary_power(0)

    if index == 0:
        share = params.split_weights[0] if above_threshold else 1.0
        return powersplit * share - state.controllers[0].last_generated_power

    if index == 1:
        if auxiliary == 0 and above_threshold:
            second = state.controllers[1]
            return powersplit * params.split_weights[1] - second.last_generated_power
        return -state.controllers[1].spec.nominal_power

    return 0.0


def proportional(state: GlobalState, index: int, params: AllocationParams) -> float:
    share = state.controllers[index].spec.power_share
    result = (state.net_power - state.target_grid_consumption) * share
    return _min_required_floor(state, index, result)


ALLOCATORS: dict[AllocationPolicy, Allocator] = {
    AllocationPolicy.CASCADE: cascade,
    AllocationPolicy.PARALLEL: parallel,
    AllocationPolicy.PROPORTIONAL: proportional,
}


def allocate(state: GlobalState, index: int, params: AllocationParams) -> float:
    """Compute the raw (unrounded) virtual meter value for one controller."""
    if not 0 <= index < len(state.controllers):
        raise IndexError(f"No controller with index {index}")
    return ALLOCATORS[params.policy](state, index, params)

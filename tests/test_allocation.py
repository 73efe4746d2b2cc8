"""Tests for the allocation policies."""

from __future__ import annotations

import pytest

from conftest import make_config, make_state, set_power
from vpm.allocation import AllocationParams, allocate, cascade, parallel, proportional
from vpm.config import ControllerConfig
from vpm.models import AllocationPolicy, GlobalState

CASCADE = AllocationParams(policy=AllocationPolicy.CASCADE)


def test_start_power_is_prefix_sum_of_nominal_power():
    state = make_state(100, 800, 1500, 600)
    starts = [c.cumulative_start_power for c in state.controllers]
    assert starts == [0, 100, 900, 2400]


def test_cascade_idle_system_sees_only_start_offsets():
    state = make_state(1500, 2250, 600)
    assert allocate(state, 0, CASCADE) == 0
    assert allocate(state, 1, CASCADE) == -1500
    # the last controller is floored at zero output
    assert allocate(state, 2, CASCADE) == 0


def test_cascade_idle_second_of_two_is_floored(cascade_state):
    assert allocate(cascade_state, 0, CASCADE) == 0
    assert allocate(cascade_state, 1, CASCADE) == 0


def test_cascade_counts_other_controllers_but_not_itself(cascade_state):
    set_power(cascade_state, 0, 1500)
    set_power(cascade_state, 1, 300)
    cascade_state.net_power = 50

    # first controller: 50 + 300 - 0
    assert cascade(cascade_state, 0, CASCADE) == 350
    # second controller: 50 + 1500 - 1500
    assert cascade(cascade_state, 1, CASCADE) == 50


def test_cascade_subtracts_target_grid_consumption():
    state = make_state(1500, 2250, target=10)
    state.net_power = 200
    assert allocate(state, 0, CASCADE) == 190


def test_cascade_last_controller_not_driven_below_zero(cascade_state):
    set_power(cascade_state, 1, 200)
    cascade_state.net_power = -600
    assert allocate(cascade_state, 1, CASCADE) == -200
    # the first controller has no floor
    assert allocate(cascade_state, 0, CASCADE) == -400


def test_cascade_only_last_controller_is_clamped():
    state = make_state(100, 800, 1500)
    state.net_power = -1000
    assert allocate(state, 1, CASCADE) == -1100
    assert allocate(state, 2, CASCADE) == 0


def test_cascade_respects_min_required_power():
    config = make_config(100, 800)
    config.controllers[0] = ControllerConfig(
        address="10.0.0.1", serial="1", nominal_power=100, min_required_power=50
    )
    state = GlobalState.from_specs(config.controller_specs())
    set_power(state, 0, 20)
    state.net_power = -500
    assert allocate(state, 0, CASCADE) == 30


def test_parallel_split_above_threshold(parallel_params):
    state = make_state(1500, 2250)
    state.net_power = 200

    first = allocate(state, 0, parallel_params)
    second = allocate(state, 1, parallel_params)

    assert first == pytest.approx(82.4)
    assert second == pytest.approx(117.6)
    assert first + second == pytest.approx(200)


def test_parallel_split_accounts_for_generated_power(parallel_params):
    state = make_state(1500, 2250)
    set_power(state, 0, 100)
    set_power(state, 1, 150)
    state.net_power = 50
    # powersplit = 50 + 250 = 300
    assert parallel(state, 0, parallel_params) == pytest.approx(300 * 0.412 - 100)
    assert parallel(state, 1, parallel_params) == pytest.approx(300 * 0.588 - 150)


def test_parallel_below_threshold_routes_everything_to_first(parallel_params):
    state = make_state(1500, 2250)
    set_power(state, 0, 30)
    state.net_power = 70  # powersplit = 100

    assert allocate(state, 0, parallel_params) == pytest.approx(100 - 30)
    assert allocate(state, 1, parallel_params) == -2250


def test_parallel_threshold_is_inclusive(parallel_params):
    state = make_state(1500, 2250)
    state.net_power = 115
    assert allocate(state, 0, parallel_params) == 115
    assert allocate(state, 1, parallel_params) == -2250


def test_parallel_auxiliary_source_forces_second_controller_down(parallel_params):
    state = make_state(1500, 2250)
    set_power(state, 0, 0, auxiliary=-300)
    state.net_power = 1000

    assert allocate(state, 0, parallel_params) == pytest.approx(1000 * 0.412)
    assert allocate(state, 1, parallel_params) == -2250


def test_parallel_ignores_controllers_past_the_second(parallel_params):
    state = make_state(1500, 2250, 600)
    state.net_power = 1000
    assert allocate(state, 2, parallel_params) == 0


def test_proportional_uses_nominal_share():
    state = make_state(1000, 3000, target=100)
    state.net_power = 500
    params = AllocationParams(policy=AllocationPolicy.PROPORTIONAL)
    assert proportional(state, 0, params) == pytest.approx(100)
    assert proportional(state, 1, params) == pytest.approx(300)


def test_proportional_configured_share_wins():
    config = make_config(1000, 3000)
    config.controllers[0].power_share = 0.5
    config.controllers[1].power_share = 0.5
    state = GlobalState.from_specs(config.controller_specs())
    state.net_power = 400
    params = AllocationParams(policy=AllocationPolicy.PROPORTIONAL)
    assert allocate(state, 0, params) == 200
    assert allocate(state, 1, params) == 200


def test_allocate_rejects_unknown_index(cascade_state):
    with pytest.raises(IndexError):
        allocate(cascade_state, 2, CASCADE)


def test_allocate_does_not_modify_state(cascade_state, parallel_params):
    set_power(cascade_state, 0, 700, limit=800)
    cascade_state.net_power = 123
    before = repr(cascade_state)
    for params in (CASCADE, parallel_params):
        allocate(cascade_state, 0, params)
        allocate(cascade_state, 1, params)
    assert repr(cascade_state) == before

"""Tests for MQTT topic dispatch."""

from __future__ import annotations

import pytest
from pytest_mock import MockerFixture

from conftest import make_config, make_state
from vpm.config import ControllerConfig
from vpm.main import _setup_mqtt
from vpm.models import GlobalState, NetPowerSource
from vpm.mqtt_client import MQTTClient, topic_matches
from vpm.sources import PushNetPowerSource


@pytest.mark.parametrize(
    "pattern, topic, expected",
    [
        ("meter/power", "meter/power", True),
        ("meter/+", "meter/power", True),
        ("meter/#", "meter/phase/1/power", True),
        ("meter/+", "meter/phase/power", False),
        ("meter/power", "meter", False),
        ("meter", "meter/power", False),
    ],
)
def test_topic_matches(pattern, topic, expected):
    assert topic_matches(pattern, topic) is expected


@pytest.mark.asyncio
async def test_dispatch_calls_matching_handlers_only(mocker: MockerFixture):
    mqtt = MQTTClient(make_config(1500))
    power = mocker.AsyncMock()
    other = mocker.AsyncMock()
    mqtt.register("meter/+", power)
    mqtt.register("other/topic", other)

    await mqtt.dispatch("meter/power", "12")

    power.assert_awaited_once_with("meter/power", "12")
    other.assert_not_awaited()


@pytest.mark.asyncio
async def test_dispatch_survives_handler_errors(mocker: MockerFixture):
    mqtt = MQTTClient(make_config(1500))
    failing = mocker.AsyncMock(side_effect=RuntimeError("boom"))
    working = mocker.AsyncMock()
    mqtt.register("meter/#", failing)
    mqtt.register("meter/power", working)

    await mqtt.dispatch("meter/power", "12")

    working.assert_awaited_once()


@pytest.mark.asyncio
async def test_pushed_net_power_reaches_state():
    state = make_state(1500)
    mqtt = MQTTClient(make_config(1500))
    mqtt.register("solar/meter/power", PushNetPowerSource(state).on_value)

    await mqtt.dispatch("solar/meter/power", "-734.2")

    assert state.net_power == -734.2


@pytest.mark.asyncio
async def test_publish_status_without_connection_is_noop():
    mqtt = MQTTClient(make_config(1500))
    await mqtt.publish_status("online")


@pytest.mark.asyncio
async def test_setup_mqtt_routes_local_status_events():
    config = make_config(1500, net_power_source=NetPowerSource.LOCAL,
                         local_status_topic="shellypro3em/events/rpc")
    state = make_state(1500)
    mqtt = _setup_mqtt(config, state)

    await mqtt.dispatch(
        "shellypro3em/events/rpc",
        '{"method": "NotifyStatus", "params": {"em:0": {"total_act_power": 410.5}}}',
    )

    assert state.net_power == 410.5


@pytest.mark.asyncio
async def test_setup_mqtt_routes_numeric_topic():
    config = make_config(1500, net_power_source=NetPowerSource.MQTT,
                         net_power_topic="solar/dtuOnBattery/ac/power")
    state = make_state(1500)
    mqtt = _setup_mqtt(config, state)

    await mqtt.dispatch("solar/dtuOnBattery/ac/power", "97")

    assert state.net_power == 97


@pytest.mark.asyncio
async def test_setup_mqtt_routes_controller_power_topics():
    config = make_config(1500, 2250, net_power_source=NetPowerSource.MQTT,
                         net_power_topic="meter/power")
    config.controllers[1] = ControllerConfig(
        nominal_power=2250, topic="solar/dtuOnBattery2/ac/power"
    )
    state = GlobalState.from_specs(config.controller_specs())
    mqtt = _setup_mqtt(config, state)

    await mqtt.dispatch("solar/dtuOnBattery2/ac/power", "812.5")

    assert state.controllers[1].last_generated_power == 812.5
    assert state.total_generated_power == 812.5
    assert not state.controllers[1].status.stale
    assert state.net_power == 0


def test_setup_mqtt_http_meter_registers_only_controller_topics(mocker: MockerFixture):
    config = make_config(1500)
    config.controllers[0] = ControllerConfig(nominal_power=1500, topic="dtu/ac/power")
    state = GlobalState.from_specs(config.controller_specs())
    register = mocker.patch.object(MQTTClient, "register")

    _setup_mqtt(config, state)

    assert [c.args[0] for c in register.call_args_list] == ["dtu/ac/power"]

"""Entry point for the oDoB Virtual Power Meter."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from .allocation import AllocationParams
from .config import AppConfig, load_config
from .drift import DriftCompensator, settling_updates
from .exceptions import ConfigError, FatalSourceError, MalformedResponse
from .models import GlobalState, NetPowerSource
from .mqtt_client import MQTTClient
from .publisher import ReadingPublisher, ReadingServer
from .sources import PushControllerSource, PushNetPowerSource, build_supervisors

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


def _setup_mqtt(config: AppConfig, state: GlobalState) -> MQTTClient:
    mqtt = MQTTClient(config)
    push = PushNetPowerSource(state)
    if config.net_power_source == NetPowerSource.MQTT:
        mqtt.register(config.net_power_topic, push.on_value)
    elif config.net_power_source == NetPowerSource.LOCAL:
        mqtt.register(config.local_status_topic, push.on_status_event)

    for index, controller in enumerate(state.controllers):
        if controller.spec.topic:
            mqtt.register(controller.spec.topic, PushControllerSource(state, index).on_value)
    return mqtt


async def main(config: AppConfig | None = None) -> None:
    """Run the Virtual Power Meter until a source fails or a signal arrives."""
    config = config or load_config()
    logging.getLogger().setLevel(config.log_level)
    logger.info("Starting oDoB Virtual Power Meter")
    logger.info(
        "Config: %d controllers, policy=%s, target=%.0fW, net=%s, delay=%.1fs",
        len(config.controllers),
        config.policy.value,
        config.target_grid_consumption,
        config.net_power_source.value,
        config.poll_delay_seconds,
    )

    # Initialize components
    state = GlobalState.from_specs(config.controller_specs(), config.target_grid_consumption)
    drift = DriftCompensator(
        settling_updates(config.poll_delay_seconds), enabled=config.drift_compensation
    )
    params = AllocationParams(
        policy=config.policy,
        split_threshold=config.split_threshold,
        split_weights=tuple(config.split_weights),
    )
    publisher = ReadingPublisher(state, params, drift, config.response_format)
    server = ReadingServer(publisher, len(state.controllers))
    supervisors = build_supervisors(config, state, drift)
    mqtt = _setup_mqtt(config, state) if config.needs_mqtt else None

    for controller in state.controllers:
        spec = controller.spec
        logger.info(
            "  %s: %s inv=%s topic=%s nominal=%.0fW start=%.0fW share=%.3f",
            spec.name,
            spec.address,
            spec.serial,
            spec.topic or "-",
            spec.nominal_power,
            spec.cumulative_start_power,
            spec.power_share,
        )

    # Shutdown handler
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    async def shutdown_watcher() -> None:
        await shutdown_event.wait()
        logger.info("Shutting down")
        if mqtt is not None:
            await mqtt.publish_status("offline")
        for task in asyncio.all_tasks():
            if task is not asyncio.current_task():
                task.cancel()

    await server.start(config.http_host, config.http_port)

    tasks = [supervisor.run() for supervisor in supervisors]
    if mqtt is not None:
        tasks.append(mqtt.start())

    # Any fatal source error ends the gather and therefore the process
    try:
        await asyncio.gather(*tasks, shutdown_watcher())
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, exiting")
    finally:
        await server.stop()
        logger.info("oDoB Virtual Power Meter stopped")


def run() -> None:
    """Console entry point: exit non-zero when a power source failed."""
    try:
        asyncio.run(main())
    except (ConfigError, FatalSourceError, MalformedResponse) as e:
        logger.critical("Terminating: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    run()

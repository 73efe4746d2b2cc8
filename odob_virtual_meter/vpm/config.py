"""Configuration loading for the Virtual Power Meter."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

from .const import (
    DEFAULT_HTTP_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_LOCAL_STATUS_TOPIC,
    DEFAULT_NET_POWER_JSON_PATH,
    DEFAULT_POLL_DELAY,
    DEFAULT_SPLIT_THRESHOLD,
    DEFAULT_SPLIT_WEIGHTS,
    DEFAULT_TARGET_GRID_CONSUMPTION,
    DEFAULT_TIMEOUT_NETWORK,
    DEFAULT_TIMEOUT_THRESHOLD,
    LOG_LEVELS,
    ONE_MINUTE,
    OPTIONS_PATH,
    WEIGHT_TOLERANCE,
)
from .exceptions import ConfigError
from .models import AllocationPolicy, ControllerSpec, NetPowerSource, ResponseFormat

logger = logging.getLogger(__name__)


@dataclass
class ControllerConfig:
    """One oDoB controller, in cascade order."""

    nominal_power: float
    address: str = ""
    serial: str = ""
    topic: str = ""
    name: str = ""
    min_required_power: float | None = None
    power_share: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> ControllerConfig:
        """Build a controller entry; it is either polled or pushed over MQTT."""
        topic = str(data.get("topic") or "")
        if not topic and not (data.get("address") and data.get("serial")):
            raise ConfigError(
                f"Controller entry needs address and serial, or a topic: {data}"
            )
        try:
            return cls(
                nominal_power=float(data["nominal_power"]),
                address=str(data.get("address") or ""),
                serial=str(data.get("serial") or ""),
                topic=topic,
                name=data.get("name", ""),
                min_required_power=(
                    float(data["min_required_power"])
                    if data.get("min_required_power") is not None
                    else None
                ),
                power_share=(
                    float(data["power_share"])
                    if data.get("power_share") is not None
                    else None
                ),
            )
        except KeyError as e:
            raise ConfigError(f"Controller entry is missing {e}: {data}") from e
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid controller entry {data}: {e}") from e


@dataclass
class AppConfig:
    """Application configuration."""

    controllers: list[ControllerConfig] = field(default_factory=list)

    # Allocation
    target_grid_consumption: float = DEFAULT_TARGET_GRID_CONSUMPTION
    policy: AllocationPolicy = AllocationPolicy.CASCADE
    split_threshold: float = DEFAULT_SPLIT_THRESHOLD
    split_weights: list[float] = field(
        default_factory=lambda: list(DEFAULT_SPLIT_WEIGHTS)
    )
    drift_compensation: bool = True

    # Polling
    poll_delay_seconds: float = DEFAULT_POLL_DELAY
    timeout_threshold: int = DEFAULT_TIMEOUT_THRESHOLD
    timeout_network_minutes: float = DEFAULT_TIMEOUT_NETWORK

    # Net power input
    net_power_source: NetPowerSource = NetPowerSource.HTTP
    net_power_url: str = ""
    net_power_json_path: str = DEFAULT_NET_POWER_JSON_PATH
    net_power_topic: str = ""
    local_status_topic: str = DEFAULT_LOCAL_STATUS_TOPIC

    # MQTT broker (mqtt and local net power sources)
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str = ""
    mqtt_password: str = ""

    # Readings endpoint
    http_host: str = DEFAULT_HTTP_HOST
    http_port: int = DEFAULT_HTTP_PORT
    response_format: ResponseFormat = ResponseFormat.SHELLY

    log_level: str = "INFO"

    @property
    def needs_mqtt(self) -> bool:
        if self.net_power_source in (NetPowerSource.MQTT, NetPowerSource.LOCAL):
            return True
        return any(c.topic for c in self.controllers)

    def controller_specs(self) -> list[ControllerSpec]:
        """Build immutable controller specs in cascade order.

        ``cumulative_start_power`` is the prefix sum of the nominal power of
        all earlier controllers. A missing ``power_share`` is derived from the
        controller's part of the total nominal power.
        """
        total_nominal = sum(c.nominal_power for c in self.controllers)
        specs: list[ControllerSpec] = []
        cumulated = 0.0
        for index, cc in enumerate(self.controllers):
            share = cc.power_share
            if share is None:
                share = cc.nominal_power / total_nominal if total_nominal else 0.0
            specs.append(
                ControllerSpec(
                    index=index,
                    name=cc.name or f"controller{index + 1}",
                    address=cc.address,
                    serial=cc.serial,
                    nominal_power=cc.nominal_power,
                    topic=cc.topic,
                    min_required_power=cc.min_required_power,
                    power_share=share,
                    cumulative_start_power=cumulated,
                )
            )
            cumulated += cc.nominal_power
        return specs

    def validate(self) -> None:
        """Raise ConfigError if the meter cannot run with this config."""
        if not self.controllers:
            raise ConfigError("At least one controller must be configured")
        if self.poll_delay_seconds <= 0:
            raise ConfigError("poll_delay_seconds must be positive")
        if self.timeout_threshold < 0:
            raise ConfigError("timeout_threshold must not be negative")
        if self.timeout_network_minutes <= 0:
            raise ConfigError("timeout_network_minutes must be positive")
        if self.poll_delay_seconds >= self.timeout_network_minutes * ONE_MINUTE:
            raise ConfigError(
                f"poll_delay_seconds ({self.poll_delay_seconds}s) must be shorter than "
                f"the network timeout ({self.timeout_network_minutes} min)"
            )
        if self.policy == AllocationPolicy.PARALLEL:
            if len(self.controllers) != 2:
                raise ConfigError("The parallel policy needs exactly two controllers")
            if len(self.split_weights) != 2:
                raise ConfigError("The parallel policy needs exactly two split weights")
            if abs(sum(self.split_weights) - 1.0) > WEIGHT_TOLERANCE:
                raise ConfigError(
                    f"split_weights must add up to 1, got {self.split_weights}"
                )
        if self.net_power_source == NetPowerSource.HTTP and not self.net_power_url:
            raise ConfigError("net_power_url is required for the http net power source")
        if self.net_power_source == NetPowerSource.MQTT and not self.net_power_topic:
            raise ConfigError("net_power_topic is required for the mqtt net power source")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"Invalid log_level '{self.log_level}', expected one of: "
                f"{', '.join(LOG_LEVELS)}"
            )


def load_config(path: str | None = None) -> AppConfig:
    """Load configuration from add-on options or environment variables."""
    config = AppConfig()
    path = path or os.environ.get("VPM_OPTIONS_PATH", OPTIONS_PATH)

    if os.path.exists(path):
        try:
            with open(path) as f:
                options = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load %s: %s, falling back to env vars", path, e)
        else:
            logger.info("Loaded configuration from %s", path)
            _apply_options(config, options)
            config.validate()
            return config

    _apply_env(config)
    config.validate()
    return config


def _enum(enum_cls, value, name: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        choices = ", ".join(m.value for m in enum_cls)
        raise ConfigError(f"Invalid {name} '{value}', expected one of: {choices}") from e


def _apply_options(config: AppConfig, options: dict) -> None:
    """Apply options.json values to config."""
    if options.get("controllers"):
        config.controllers = [ControllerConfig.from_dict(c) for c in options["controllers"]]
    if options.get("target_grid_consumption") is not None:
        config.target_grid_consumption = float(options["target_grid_consumption"])
    if options.get("policy"):
        config.policy = _enum(AllocationPolicy, options["policy"], "policy")
    if options.get("split_threshold") is not None:
        config.split_threshold = float(options["split_threshold"])
    if options.get("split_weights"):
        config.split_weights = [float(w) for w in options["split_weights"]]
    if options.get("drift_compensation") is not None:
        config.drift_compensation = bool(options["drift_compensation"])
    if options.get("poll_delay_seconds") is not None:
        config.poll_delay_seconds = float(options["poll_delay_seconds"])
    if options.get("timeout_threshold") is not None:
        config.timeout_threshold = int(options["timeout_threshold"])
    if options.get("timeout_network_minutes") is not None:
        config.timeout_network_minutes = float(options["timeout_network_minutes"])
    if options.get("net_power_source"):
        config.net_power_source = _enum(
            NetPowerSource, options["net_power_source"], "net_power_source"
        )
    if options.get("net_power_url"):
        config.net_power_url = options["net_power_url"]
    if options.get("net_power_json_path"):
        config.net_power_json_path = options["net_power_json_path"]
    if options.get("net_power_topic"):
        config.net_power_topic = options["net_power_topic"]
    if options.get("local_status_topic"):
        config.local_status_topic = options["local_status_topic"]
    if options.get("mqtt_host"):
        config.mqtt_host = options["mqtt_host"]
    if options.get("mqtt_port"):
        config.mqtt_port = int(options["mqtt_port"])
    if options.get("mqtt_username"):
        config.mqtt_username = options["mqtt_username"]
    if options.get("mqtt_password"):
        config.mqtt_password = options["mqtt_password"]
    if options.get("http_host"):
        config.http_host = options["http_host"]
    if options.get("http_port"):
        config.http_port = int(options["http_port"])
    if options.get("response_format"):
        config.response_format = _enum(
            ResponseFormat, options["response_format"], "response_format"
        )
    if options.get("log_level"):
        config.log_level = str(options["log_level"]).upper()


def _apply_env(config: AppConfig) -> None:
    """Apply VPM_* environment variables to config."""
    controllers_env = os.environ.get("VPM_CONTROLLERS")
    if controllers_env:
        try:
            entries = json.loads(controllers_env)
        except json.JSONDecodeError as e:
            raise ConfigError(f"VPM_CONTROLLERS is not valid JSON: {e}") from e
        config.controllers = [ControllerConfig.from_dict(c) for c in entries]

    config.target_grid_consumption = float(
        os.environ.get("VPM_TARGET_GRID_CONSUMPTION", config.target_grid_consumption)
    )
    policy_env = os.environ.get("VPM_POLICY")
    if policy_env:
        config.policy = _enum(AllocationPolicy, policy_env, "policy")
    config.split_threshold = float(
        os.environ.get("VPM_SPLIT_THRESHOLD", config.split_threshold)
    )
    weights_env = os.environ.get("VPM_SPLIT_WEIGHTS")
    if weights_env:
        config.split_weights = [float(w) for w in weights_env.split(",")]
    drift_env = os.environ.get("VPM_DRIFT_COMPENSATION")
    if drift_env:
        config.drift_compensation = drift_env.lower() in ("1", "true", "yes", "on")
    config.poll_delay_seconds = float(
        os.environ.get("VPM_POLL_DELAY", config.poll_delay_seconds)
    )
    config.timeout_threshold = int(
        os.environ.get("VPM_TIMEOUT_THRESHOLD", config.timeout_threshold)
    )
    config.timeout_network_minutes = float(
        os.environ.get("VPM_TIMEOUT_NETWORK", config.timeout_network_minutes)
    )

    source_env = os.environ.get("VPM_NET_POWER_SOURCE")
    if source_env:
        config.net_power_source = _enum(NetPowerSource, source_env, "net_power_source")
    config.net_power_url = os.environ.get("VPM_NET_POWER_URL", config.net_power_url)
    config.net_power_json_path = os.environ.get(
        "VPM_NET_POWER_JSON_PATH", config.net_power_json_path
    )
    config.net_power_topic = os.environ.get("VPM_NET_POWER_TOPIC", config.net_power_topic)
    config.local_status_topic = os.environ.get(
        "VPM_LOCAL_STATUS_TOPIC", config.local_status_topic
    )

    config.mqtt_host = os.environ.get("MQTT_HOST", config.mqtt_host)
    config.mqtt_port = int(os.environ.get("MQTT_PORT", config.mqtt_port))
    config.mqtt_username = os.environ.get("MQTT_USERNAME", config.mqtt_username)
    config.mqtt_password = os.environ.get("MQTT_PASSWORD", config.mqtt_password)

    config.http_host = os.environ.get("VPM_HTTP_HOST", config.http_host)
    config.http_port = int(os.environ.get("VPM_HTTP_PORT", config.http_port))
    format_env = os.environ.get("VPM_RESPONSE_FORMAT")
    if format_env:
        config.response_format = _enum(ResponseFormat, format_env, "response_format")
    config.log_level = os.environ.get("VPM_LOG_LEVEL", config.log_level).upper()

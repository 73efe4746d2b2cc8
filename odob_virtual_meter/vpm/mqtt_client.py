"""MQTT subscriber with auto-reconnect, built on aiomqtt."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import aiomqtt

from .config import AppConfig
from .const import MQTT_RECONNECT_DELAY, VPM_TOPIC_STATUS

logger = logging.getLogger(__name__)

# Type for MQTT message handler callbacks
MessageHandler = Callable[[str, str], Coroutine[Any, Any, None]]


class MQTTClient:
    """Dispatches pushed power readings to registered handlers.

    Announces ``online`` on VPM_TOPIC_STATUS after connecting; the broker
    publishes ``offline`` through the last will when the process dies.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._handlers: dict[str, MessageHandler] = {}
        self._client: aiomqtt.Client | None = None

    def register(self, topic: str, callback: MessageHandler) -> None:
        """Register an async callback(topic, payload) for a topic pattern."""
        self._handlers[topic] = callback
        logger.debug("Registered handler for topic: %s", topic)

    async def publish_status(self, status: str) -> None:
        if self._client is None:
            return
        try:
            await self._client.publish(VPM_TOPIC_STATUS, status, retain=True)
        except aiomqtt.MqttError as e:
            logger.warning("Could not publish status %s: %s", status, e)

    async def start(self) -> None:
        """Connect, subscribe and dispatch messages, reconnecting forever."""
        will = aiomqtt.Will(VPM_TOPIC_STATUS, "offline", retain=True)
        while True:
            try:
                logger.info(
                    "Connecting to MQTT broker at %s:%d",
                    self._config.mqtt_host,
                    self._config.mqtt_port,
                )
                async with aiomqtt.Client(
                    hostname=self._config.mqtt_host,
                    port=self._config.mqtt_port,
                    username=self._config.mqtt_username or None,
                    password=self._config.mqtt_password or None,
                    will=will,
                ) as client:
                    self._client = client
                    logger.info("MQTT connected")

                    for topic in self._handlers:
                        await client.subscribe(topic)
                        logger.debug("Subscribed to: %s", topic)
                    await self.publish_status("online")

                    async for message in client.messages:
                        await self.dispatch(str(message.topic), _decode(message.payload))

            except aiomqtt.MqttError as e:
                self._client = None
                logger.warning(
                    "MQTT connection lost: %s. Reconnecting in %ds...",
                    e,
                    MQTT_RECONNECT_DELAY,
                )
                await asyncio.sleep(MQTT_RECONNECT_DELAY)

    async def dispatch(self, topic: str, payload: str) -> None:
        """Pass a received message to every matching handler."""
        for pattern, handler in self._handlers.items():
            if topic_matches(pattern, topic):
                try:
                    await handler(topic, payload)
                except Exception:
                    logger.exception(
                        "Error in handler for topic %s (pattern %s)", topic, pattern
                    )


def _decode(payload: Any) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8")
    return str(payload)


def topic_matches(pattern: str, topic: str) -> bool:
    """Check if an MQTT topic matches a subscription pattern.

    Supports + (single level) and # (multi level) wildcards.
    """
    pattern_parts = pattern.split("/")
    topic_parts = topic.split("/")

    for i, pat in enumerate(pattern_parts):
        if pat == "#":
            return True
        if i >= len(topic_parts):
            return False
        if pat != "+" and pat != topic_parts[i]:
            return False

    return len(pattern_parts) == len(topic_parts)

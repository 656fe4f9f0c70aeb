"""MQTT transport adapter: broker messages in, calibration commands out."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from thermocal.config import CalibrationConfig
from thermocal.engine import CalibrationEngine
from thermocal.ingestion.events import InboundEvent
from thermocal.models.command import CalibrationCommand


def decode_message(topic: str, payload: bytes) -> InboundEvent | None:
    """Decode an MQTT message into an :class:`InboundEvent`.

    Returns ``None`` when the payload is not a UTF-8 JSON object (plain
    state strings such as ``"online"`` are common on shared brokers).
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return InboundEvent(identifier=topic, payload=parsed)


def encode_command(command: CalibrationCommand, payload_key: str) -> tuple[str, str]:
    """Render a command as ``(topic, JSON payload)``."""
    return command.target_topic, json.dumps(command.to_payload(payload_key))


class ThermocalMqttRuntime:
    """Threaded paho-mqtt runtime feeding an engine and publishing its commands."""

    def __init__(
        self,
        *,
        engine: CalibrationEngine,
        config: CalibrationConfig | None = None,
        on_command: Callable[[CalibrationCommand], None] | None = None,
        qos: int = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._config = config or engine.config
        self._on_command = on_command
        self._qos = qos
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def handle_message(self, client: Any, topic: str, payload: bytes) -> CalibrationCommand | None:
        """Run one broker message through the engine and publish any command."""
        event = decode_message(topic, payload)
        if event is None:
            self._logger.debug("Ignoring non-JSON payload on %s", topic)
            return None

        command = self._engine.handle(event)
        if command is None:
            return None

        out_topic, out_payload = encode_command(command, self._config.command_payload_key)
        self._logger.debug("Publishing topic=%s payload=%s", out_topic, out_payload)
        client.publish(out_topic, out_payload, qos=self._qos)
        if self._on_command is not None:
            self._on_command(command)
        return command

    def start(self) -> None:
        """Connect to the configured broker and subscribe."""
        self.stop()
        config = self._config
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s subscriptions=%s",
            config.mqtt_host,
            config.mqtt_port,
            config.subscriptions,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected successfully reason=%s", reason_code)
            for topic_filter in config.subscriptions:
                self._logger.debug("MQTT subscribing topic=%s", topic_filter)
                c.subscribe(topic_filter, qos=self._qos)

        def on_message(c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                self.handle_message(c, msg.topic, msg.payload)
            except Exception:
                # Keep the network loop alive; one bad message must not stop calibration.
                self._logger.exception("Failed to process message on %s", msg.topic)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

"""Calibration engine: one inbound device event in, at most one command out.

Pipeline per event::

    command-topic filter -> discovery -> duplicate check -> payload schema
    -> ingest into location state -> [trigger?] aggregate -> decide
    -> cooldown / rate limit -> command

Each location's read-modify-write runs under its own lock, so events for
different locations may be handled concurrently (e.g. from the MQTT
network thread and a caller's thread) without sharing mutable state.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from thermocal.aggregation import aggregate
from thermocal.calibration import decide
from thermocal.config import CalibrationConfig, TriggerPolicy
from thermocal.discovery import DeviceKind, DeviceMatch, TopicClassifier, is_command_topic
from thermocal.exceptions import ThermocalPayloadError
from thermocal.ingestion.events import InboundEvent, SensorPayload, ThermostatPayload, parse_payload, payload_marker
from thermocal.models.command import CalibrationCommand
from thermocal.models.state import LocationState, SensorReading, ThermostatSnapshot
from thermocal.state.policy import CommandLimiter, in_cooldown
from thermocal.state.store import LocationStateStore

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class DataQualityWarning:
    """A sensor sent something that is not a usable temperature."""

    location: str
    identifier: str
    reason: str
    payload: dict[str, Any] = field(default_factory=dict)


class CalibrationEngine:
    """Keeps thermostat calibration in line with the room's external sensors.

    Parameters
    ----------
    config : CalibrationConfig, optional
        Engine configuration. Defaults to :class:`CalibrationConfig` defaults.
    store : LocationStateStore, optional
        Where location records live. Defaults to an in-memory store using
        ``config.store_prefix``.
    clock : callable, optional
        Returns "now" in epoch milliseconds for events without a timestamp.
    on_data_quality : callable, optional
        Called with a :class:`DataQualityWarning` whenever a sensor payload
        is rejected.
    """

    def __init__(
        self,
        config: CalibrationConfig | None = None,
        *,
        store: LocationStateStore | None = None,
        clock: Callable[[], int] = _now_ms,
        on_data_quality: Callable[[DataQualityWarning], None] | None = None,
    ) -> None:
        self._config = config or CalibrationConfig()
        self._classifier = TopicClassifier(self._config.rules)
        self._store = store if store is not None else LocationStateStore(prefix=self._config.store_prefix)
        self._limiter = CommandLimiter(
            cooldown_ms=self._config.cooldown_ms,
            limit=self._config.rate_limit,
            window_ms=self._config.rate_window_ms,
        )
        self._clock = clock
        self._on_data_quality = on_data_quality
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def config(self) -> CalibrationConfig:
        return self._config

    @property
    def store(self) -> LocationStateStore:
        return self._store

    @property
    def classifier(self) -> TopicClassifier:
        return self._classifier

    def location_state(self, location: str) -> LocationState:
        """Snapshot of a location's stored state."""
        return self._store.get(location)

    def _location_lock(self, location: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(location)
            if lock is None:
                lock = threading.Lock()
                self._locks[location] = lock
            return lock

    def handle(self, event: InboundEvent | Mapping[str, Any]) -> CalibrationCommand | None:
        """Process one inbound device event.

        Returns the calibration command to publish, or ``None``. Events that
        cannot be used (command topics, unknown identifiers, malformed or
        duplicate payloads) are dropped without raising.
        """
        if not isinstance(event, InboundEvent):
            try:
                event = InboundEvent.model_validate(event)
            except ValidationError as exc:
                _logger.debug("Dropping malformed event: %s", exc)
                return None

        identifier = event.identifier
        if is_command_topic(identifier, self._config.command_suffix):
            _logger.debug("Ignoring command topic %s", identifier)
            return None

        device = self._classifier.classify(identifier)
        if device is None:
            return None

        now = event.timestamp if event.timestamp is not None else self._clock()
        with self._location_lock(device.location):
            return self._process(device, event.payload, now)

    def _process(self, device: DeviceMatch, payload: dict[str, Any], now: int) -> CalibrationCommand | None:
        state = self._store.get(device.location)

        marker = payload_marker(payload)
        if marker is not None and state.freshness_markers.get(device.identifier) == marker:
            _logger.debug("Duplicate message from %s (last_seen=%s)", device.identifier, marker)
            return None

        try:
            parsed = parse_payload(device.kind, payload, identifier=device.identifier)
        except ThermocalPayloadError as exc:
            self._report_malformed(device, payload, exc)
            return None

        if marker is not None:
            state.freshness_markers[device.identifier] = marker

        if isinstance(parsed, SensorPayload):
            self._ingest_sensor(state, device, parsed, now)
            triggered = self._config.trigger == TriggerPolicy.SENSOR
        else:
            # A report landing inside the cooldown is most likely the echo of
            # our own command; it never triggers.
            echo = in_cooldown(state, now, self._config.cooldown_ms)
            self._ingest_thermostat(state, device, parsed, now)
            triggered = self._config.trigger == TriggerPolicy.THERMOSTAT and not echo

        command = self._recalculate(device.location, state, now) if triggered else None
        self._store.put(device.location, state)
        return command

    def _report_malformed(self, device: DeviceMatch, payload: dict[str, Any], exc: ThermocalPayloadError) -> None:
        if device.kind != DeviceKind.SENSOR:
            _logger.debug("Dropping %s: %s", device.identifier, exc)
            return

        _logger.warning("Data quality: %s sent an unusable reading for %s: %s", device.identifier, device.location, exc)
        if self._on_data_quality is not None:
            self._on_data_quality(
                DataQualityWarning(
                    location=device.location,
                    identifier=device.identifier,
                    reason=str(exc),
                    payload=dict(payload),
                )
            )

    def _ingest_sensor(self, state: LocationState, device: DeviceMatch, parsed: SensorPayload, now: int) -> None:
        previous = state.sensors.get(device.identifier)
        state.sensors[device.identifier] = SensorReading(
            temperature=parsed.temperature,
            observed_at=now,
            base_weight=device.base_weight,
        )
        _logger.debug(
            "Sensor update for %s: %s = %s (%s) weight=%s",
            device.location,
            device.identifier,
            parsed.temperature,
            f"was {previous.temperature}" if previous is not None else "new",
            device.base_weight,
        )

    def _ingest_thermostat(
        self,
        state: LocationState,
        device: DeviceMatch,
        parsed: ThermostatPayload,
        now: int,
    ) -> None:
        state.thermostat = ThermostatSnapshot(
            command_topic=device.identifier,
            reported_temperature=parsed.local_temperature,
            applied_calibration=parsed.local_temperature_calibration,
            observed_at=now,
        )
        # The device's own report is the best knowledge of what it runs with.
        state.last_applied_calibration = parsed.local_temperature_calibration
        _logger.debug(
            "Thermostat update for %s: temp=%s calibration=%s",
            device.location,
            parsed.local_temperature,
            parsed.local_temperature_calibration,
        )

    def _recalculate(self, location: str, state: LocationState, now: int) -> CalibrationCommand | None:
        thermostat = state.thermostat
        if thermostat is None:
            _logger.debug("Waiting for first thermostat report for %s", location)
            return None

        result = aggregate(state.sensors, now, self._config.decay)
        state.sensors = result.retained
        if result.valid_count == 0 or result.average_temperature is None:
            _logger.debug("No valid sensor readings available for %s", location)
            return None

        decision = decide(
            thermostat,
            result.average_temperature,
            state.previous_calibration,
            step=self._config.step,
            hysteresis=self._config.hysteresis,
        )
        if not decision.should_act:
            _logger.debug("No calibration change for %s (%s)", location, decision.reason)
            return None

        if not self._limiter.permit(state, now):
            _logger.info(
                "Calibration for %s needed (%s -> %s) but command emission is gated",
                location,
                decision.previous_calibration,
                decision.rounded_calibration,
            )
            return None

        # Optimistic: remember the new value before the thermostat confirms it.
        state.last_applied_calibration = decision.rounded_calibration
        command = CalibrationCommand(
            target_topic=f"{thermostat.command_topic}{self._config.command_suffix}",
            calibration_offset=decision.rounded_calibration,
        )
        _logger.info(
            "Calibrating %s: %s -> %s (average sensor %.2f, thermostat %s)",
            location,
            decision.previous_calibration,
            decision.rounded_calibration,
            result.average_temperature,
            thermostat.reported_temperature,
        )
        return command

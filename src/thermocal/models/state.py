"""Per-location state records."""

from __future__ import annotations

import enum

from pydantic import ConfigDict, Field

from thermocal.models._base import ThermocalModel


class LocationPhase(enum.StrEnum):
    """Implicit lifecycle of a location."""

    UNINITIALIZED = "uninitialized"
    AWAITING_THERMOSTAT = "awaiting_thermostat"
    READY = "ready"


class SensorReading(ThermocalModel):
    """Latest temperature reported by one external sensor."""

    model_config = ConfigDict(frozen=True)

    temperature: float
    observed_at: int
    """Epoch milliseconds at which the reading was ingested."""

    base_weight: float = 1.0


class ThermostatSnapshot(ThermocalModel):
    """Latest report from the location's thermostat."""

    model_config = ConfigDict(frozen=True)

    command_topic: str
    """Identifier the thermostat reported on; commands go to this plus the suffix."""

    reported_temperature: float
    applied_calibration: float = 0.0
    observed_at: int

    @property
    def raw_internal_temperature(self) -> float:
        """Thermostat sensor reading before its calibration is applied."""
        return self.reported_temperature - self.applied_calibration


class LocationState(ThermocalModel):
    """Everything the engine remembers about one location.

    Instances handed out by the state store are independent copies; an
    event handler mutates its copy and writes it back in one ``put``.
    """

    thermostat: ThermostatSnapshot | None = None
    sensors: dict[str, SensorReading] = Field(default_factory=dict)
    last_applied_calibration: float | None = None
    last_action_at: int = 0
    """Epoch milliseconds of the last emitted command (0 = never)."""

    action_timestamps: list[int] = Field(default_factory=list)
    freshness_markers: dict[str, str] = Field(default_factory=dict)
    """Last ``last_seen`` marker per raw identifier, for duplicate detection."""

    @property
    def phase(self) -> LocationPhase:
        if self.thermostat is not None:
            return LocationPhase.READY
        if self.sensors or self.freshness_markers:
            return LocationPhase.AWAITING_THERMOSTAT
        return LocationPhase.UNINITIALIZED

    @property
    def previous_calibration(self) -> float:
        """Calibration the thermostat is believed to run with right now."""
        if self.last_applied_calibration is not None:
            return self.last_applied_calibration
        if self.thermostat is not None:
            return self.thermostat.applied_calibration
        return 0.0

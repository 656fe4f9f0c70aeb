"""Typed records for thermocal state and commands."""

from thermocal.models._base import ThermocalModel
from thermocal.models.command import CalibrationCommand
from thermocal.models.state import LocationPhase, LocationState, SensorReading, ThermostatSnapshot

__all__ = [
    "CalibrationCommand",
    "LocationPhase",
    "LocationState",
    "SensorReading",
    "ThermocalModel",
    "ThermostatSnapshot",
]

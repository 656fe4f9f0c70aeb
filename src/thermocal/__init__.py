"""thermocal - Thermostat calibration from external room sensors."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("thermocal")
except PackageNotFoundError:
    __version__ = "0+local"
from thermocal.aggregation import AggregateResult, DecayCurve, DecayMode, aggregate
from thermocal.calibration import CalibrationDecision, DecisionReason, decide, round_to_step
from thermocal.config import CalibrationConfig, TriggerPolicy
from thermocal.discovery import DeviceKind, DeviceMatch, DiscoveryRule, TopicClassifier, is_command_topic
from thermocal.engine import CalibrationEngine, DataQualityWarning
from thermocal.exceptions import ThermocalConfigError, ThermocalError, ThermocalPayloadError
from thermocal.ingestion import InboundEvent
from thermocal.models import (
    CalibrationCommand,
    LocationPhase,
    LocationState,
    SensorReading,
    ThermostatSnapshot,
)
from thermocal.state.policy import CommandLimiter
from thermocal.state.store import InMemoryBackend, KeyValueBackend, LocationStateStore

__all__ = [
    "__version__",
    "AggregateResult",
    "CalibrationCommand",
    "CalibrationConfig",
    "CalibrationDecision",
    "CalibrationEngine",
    "CommandLimiter",
    "DataQualityWarning",
    "DecayCurve",
    "DecayMode",
    "DecisionReason",
    "DeviceKind",
    "DeviceMatch",
    "DiscoveryRule",
    "InMemoryBackend",
    "InboundEvent",
    "KeyValueBackend",
    "LocationPhase",
    "LocationState",
    "LocationStateStore",
    "SensorReading",
    "ThermocalConfigError",
    "ThermocalError",
    "ThermocalPayloadError",
    "ThermostatSnapshot",
    "TopicClassifier",
    "TriggerPolicy",
    "aggregate",
    "decide",
    "is_command_topic",
    "round_to_step",
]

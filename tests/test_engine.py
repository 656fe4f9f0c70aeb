from __future__ import annotations

import logging
import threading

import pytest

from thermocal.config import CalibrationConfig, TriggerPolicy
from thermocal.discovery import DeviceKind, DiscoveryRule
from thermocal.engine import CalibrationEngine, DataQualityWarning
from thermocal.ingestion.events import InboundEvent
from thermocal.models.command import CalibrationCommand
from thermocal.models.state import LocationPhase, LocationState, SensorReading, ThermostatSnapshot

T0 = 1_767_225_600_000  # 2026-01-01T00:00:00Z
SECOND = 1_000
MINUTE = 60 * SECOND

OFFICE = "sensor.temp_office"
OFFICE_2 = "sensor.temp_office_2"
THERMOSTAT = "zigbee2mqtt/thermostat_office"


def _sensor(engine: CalibrationEngine, identifier: str, temp: float, ts: int) -> CalibrationCommand | None:
    return engine.handle(InboundEvent(identifier=identifier, payload={"temperature": temp}, timestamp=ts))


def _thermostat(
    engine: CalibrationEngine,
    temp: float,
    calibration: float,
    ts: int,
) -> CalibrationCommand | None:
    return engine.handle(
        InboundEvent(
            identifier=THERMOSTAT,
            payload={"local_temperature": temp, "local_temperature_calibration": calibration},
            timestamp=ts,
        )
    )


def _ready_engine(config: CalibrationConfig | None = None) -> CalibrationEngine:
    """Office with sensors at 20 (weight 1.0) and 22 (weight 0.5) and a thermostat at 19 / 0."""
    engine = CalibrationEngine(config)
    assert _sensor(engine, OFFICE, 20.0, T0) is None
    assert _sensor(engine, OFFICE_2, 22.0, T0) is None
    assert _thermostat(engine, 19.0, 0.0, T0 + SECOND) is None
    return engine


def test_weighted_average_of_two_fresh_sensors_sets_calibration() -> None:
    engine = _ready_engine()

    command = _sensor(engine, OFFICE, 20.0, T0 + 2 * SECOND)

    assert command == CalibrationCommand(target_topic="zigbee2mqtt/thermostat_office/set", calibration_offset=1.6)
    assert command.to_payload() == {"local_temperature_calibration": 1.6}

    state = engine.location_state("office")
    assert state.last_applied_calibration == 1.6
    assert state.last_action_at == T0 + 2 * SECOND
    assert state.action_timestamps == [T0 + 2 * SECOND]


def test_aged_reading_shifts_calibration() -> None:
    engine = CalibrationEngine()
    engine.store.put(
        "office",
        LocationState(
            thermostat=ThermostatSnapshot(
                command_topic=THERMOSTAT,
                reported_temperature=19.0,
                applied_calibration=0.0,
                observed_at=T0 - MINUTE,
            ),
            sensors={OFFICE: SensorReading(temperature=20.0, observed_at=T0 - 10 * MINUTE, base_weight=1.0)},
        ),
    )

    command = _sensor(engine, OFFICE_2, 22.0, T0)

    assert command is not None
    assert command.calibration_offset == 1.8


def test_cooldown_suppresses_command_but_not_ingestion() -> None:
    engine = _ready_engine()
    assert _sensor(engine, OFFICE, 20.0, T0 + 2 * SECOND) is not None

    assert _sensor(engine, OFFICE, 23.0, T0 + 3 * SECOND) is None

    state = engine.location_state("office")
    assert state.sensors[OFFICE].temperature == 23.0
    assert state.sensors[OFFICE].observed_at == T0 + 3 * SECOND
    assert state.last_applied_calibration == 1.6

    command = _sensor(engine, OFFICE, 23.0, T0 + 7 * SECOND)
    assert command is not None
    assert command.calibration_offset == 3.6


def test_thermostat_ingestion_during_cooldown_updates_state() -> None:
    engine = _ready_engine()
    assert _sensor(engine, OFFICE, 20.0, T0 + 2 * SECOND) is not None

    assert _thermostat(engine, 20.6, 1.6, T0 + 3 * SECOND) is None

    thermostat = engine.location_state("office").thermostat
    assert thermostat is not None
    assert thermostat.reported_temperature == 20.6
    assert thermostat.applied_calibration == 1.6


def test_rate_limit_caps_commands_per_window() -> None:
    engine = CalibrationEngine(CalibrationConfig(cooldown_ms=0, rate_limit=2, rate_window_ms=60 * SECOND))
    assert _thermostat(engine, 19.0, 0.0, T0 - SECOND) is None

    first = _sensor(engine, OFFICE, 20.0, T0)
    second = _sensor(engine, OFFICE, 21.0, T0 + 10 * SECOND)
    third = _sensor(engine, OFFICE, 22.0, T0 + 20 * SECOND)
    later = _sensor(engine, OFFICE, 23.0, T0 + 61 * SECOND)

    assert first is not None and first.calibration_offset == 1.0
    assert second is not None and second.calibration_offset == 2.0
    assert third is None
    assert later is not None and later.calibration_offset == 4.0


def test_thermostat_echo_converges_without_new_command() -> None:
    engine = _ready_engine()
    assert _sensor(engine, OFFICE, 20.0, T0 + 2 * SECOND) is not None

    # The thermostat reports back with the new calibration applied.
    assert _thermostat(engine, 20.6, 1.6, T0 + 10 * SECOND) is None
    assert _sensor(engine, OFFICE, 20.0, T0 + 20 * SECOND) is None
    assert _sensor(engine, OFFICE_2, 22.0, T0 + 30 * SECOND) is None

    assert engine.location_state("office").action_timestamps == [T0 + 2 * SECOND]


def test_thermostat_report_does_not_trigger_under_sensor_policy() -> None:
    engine = CalibrationEngine()
    assert _sensor(engine, OFFICE, 21.0, T0) is None

    assert _thermostat(engine, 19.0, 0.0, T0 + SECOND) is None
    assert engine.location_state("office").last_action_at == 0


def test_thermostat_policy_triggers_on_report_and_ignores_echo() -> None:
    engine = CalibrationEngine(CalibrationConfig(trigger=TriggerPolicy.THERMOSTAT))
    assert _sensor(engine, OFFICE, 20.0, T0) is None
    assert _sensor(engine, OFFICE_2, 22.0, T0) is None

    command = _thermostat(engine, 19.0, 0.0, T0 + SECOND)
    assert command is not None
    assert command.calibration_offset == 1.6

    # Sensor readings never trigger under this policy.
    assert _sensor(engine, OFFICE, 25.0, T0 + 2 * SECOND) is None
    # Inside cooldown the report is treated as our own echo.
    assert _thermostat(engine, 20.6, 1.6, T0 + 3 * SECOND) is None
    assert engine.location_state("office").action_timestamps == [T0 + SECOND]

    command = _thermostat(engine, 20.6, 1.6, T0 + 30 * SECOND)
    assert command is not None
    # (25 * 1.0 + 22 * 0.5) / 1.5 = 24.0, raw internal 19.0
    assert command.calibration_offset == 5.0


def test_sensor_without_thermostat_is_ingested_silently() -> None:
    engine = CalibrationEngine()

    assert _sensor(engine, OFFICE, 20.0, T0) is None

    state = engine.location_state("office")
    assert state.phase == LocationPhase.AWAITING_THERMOSTAT
    assert state.sensors[OFFICE].base_weight == 1.0


def test_phase_becomes_ready_after_thermostat_report() -> None:
    engine = _ready_engine()

    assert engine.location_state("office").phase == LocationPhase.READY


def test_expired_readings_are_pruned_on_aggregation() -> None:
    engine = _ready_engine()

    assert _sensor(engine, OFFICE, 20.0, T0 + 31 * MINUTE) is not None

    sensors = engine.location_state("office").sensors
    assert set(sensors) == {OFFICE}


def test_no_valid_readings_skips_calculation() -> None:
    config = CalibrationConfig(
        rules=(
            DiscoveryRule(pattern=r"sensor\.muted_(.*)", kind=DeviceKind.SENSOR, base_weight=0.0),
            DiscoveryRule(pattern=r"zigbee2mqtt/thermostat_(.*)", kind=DeviceKind.THERMOSTAT),
        )
    )
    engine = CalibrationEngine(config)
    assert _thermostat(engine, 19.0, 0.0, T0) is None

    assert _sensor(engine, "sensor.muted_office", 25.0, T0 + SECOND) is None
    assert engine.location_state("office").sensors == {}


def test_command_topics_are_ignored() -> None:
    engine = CalibrationEngine()

    command = engine.handle(
        InboundEvent(
            identifier="zigbee2mqtt/thermostat_office/set",
            payload={"local_temperature_calibration": 1.6},
            timestamp=T0,
        )
    )

    assert command is None
    assert engine.location_state("office/set").phase == LocationPhase.UNINITIALIZED
    assert engine.location_state("office").phase == LocationPhase.UNINITIALIZED


def test_unclassified_identifier_is_dropped() -> None:
    engine = CalibrationEngine()

    assert _sensor(engine, "zigbee2mqtt/bridge/state", 20.0, T0) is None


def test_duplicate_freshness_marker_is_dropped() -> None:
    engine = CalibrationEngine()
    payload = {"temperature": 20.0, "last_seen": "2026-01-01T00:00:00Z"}
    engine.handle(InboundEvent(identifier=OFFICE, payload=payload, timestamp=T0))

    engine.handle(
        InboundEvent(
            identifier=OFFICE,
            payload={"temperature": 25.0, "last_seen": "2026-01-01T00:00:00Z"},
            timestamp=T0 + SECOND,
        )
    )

    state = engine.location_state("office")
    assert state.sensors[OFFICE].temperature == 20.0
    assert state.sensors[OFFICE].observed_at == T0
    assert state.freshness_markers == {OFFICE: "2026-01-01T00:00:00Z"}


def test_new_freshness_marker_is_accepted() -> None:
    engine = CalibrationEngine()
    engine.handle(InboundEvent(identifier=OFFICE, payload={"temperature": 20.0, "last_seen": 1}, timestamp=T0))
    engine.handle(InboundEvent(identifier=OFFICE, payload={"temperature": 21.0, "last_seen": 2}, timestamp=T0 + 1))

    assert engine.location_state("office").sensors[OFFICE].temperature == 21.0


def test_malformed_sensor_payload_reports_data_quality(caplog: pytest.LogCaptureFixture) -> None:
    warnings: list[DataQualityWarning] = []
    engine = CalibrationEngine(on_data_quality=warnings.append)

    with caplog.at_level(logging.WARNING, logger="thermocal.engine"):
        command = _sensor(engine, OFFICE, "warm", T0)  # type: ignore[arg-type]

    assert command is None
    assert len(warnings) == 1
    assert warnings[0].location == "office"
    assert warnings[0].identifier == OFFICE
    assert warnings[0].payload == {"temperature": "warm"}
    assert any("Data quality" in record.getMessage() for record in caplog.records)
    assert engine.location_state("office").phase == LocationPhase.UNINITIALIZED


def test_malformed_thermostat_payload_is_dropped_quietly() -> None:
    warnings: list[DataQualityWarning] = []
    engine = CalibrationEngine(on_data_quality=warnings.append)

    command = engine.handle(InboundEvent(identifier=THERMOSTAT, payload={"state": "ON"}, timestamp=T0))

    assert command is None
    assert warnings == []
    assert engine.location_state("office").thermostat is None


def test_clock_is_used_when_event_has_no_timestamp() -> None:
    engine = CalibrationEngine(clock=lambda: T0 + 42)

    engine.handle({"topic": OFFICE, "payload": {"temperature": 20.0}})

    assert engine.location_state("office").sensors[OFFICE].observed_at == T0 + 42


def test_locations_are_independent() -> None:
    engine = _ready_engine()
    assert _sensor(engine, OFFICE, 20.0, T0 + 2 * SECOND) is not None

    engine.handle(
        InboundEvent(
            identifier="zigbee2mqtt/thermostat_kitchen",
            payload={"local_temperature": 18.0, "local_temperature_calibration": 0.0},
            timestamp=T0 + 2 * SECOND,
        )
    )
    command = _sensor(engine, "sensor.temp_kitchen", 19.0, T0 + 3 * SECOND)

    assert command is not None
    assert command.target_topic == "zigbee2mqtt/thermostat_kitchen/set"
    assert command.calibration_offset == 1.0


def test_small_synthetic_timestamps_are_kept_in_caller_timebase() -> None:
    engine = CalibrationEngine(clock=lambda: T0)
    assert _sensor(engine, OFFICE, 20.0, 1_000) is None
    assert _thermostat(engine, 19.0, 0.0, 1_500) is None

    first = _sensor(engine, OFFICE, 20.0, 2_000)
    assert first is not None
    assert first.calibration_offset == 1.0

    # 10 ms later, well inside the 5 s cooldown.
    assert _sensor(engine, OFFICE, 23.0, 2_010) is None
    assert engine.location_state("office").sensors[OFFICE].observed_at == 2_010

    second = _sensor(engine, OFFICE, 23.0, 7_000)
    assert second is not None
    assert second.calibration_offset == 4.0
    assert engine.location_state("office").action_timestamps == [2_000, 7_000]


def test_zero_timestamp_is_used_rather_than_the_clock() -> None:
    engine = CalibrationEngine(clock=lambda: T0)

    _sensor(engine, OFFICE, 20.0, 0)

    assert engine.location_state("office").sensors[OFFICE].observed_at == 0


def test_implausible_sensor_value_is_a_data_quality_warning() -> None:
    warnings: list[DataQualityWarning] = []
    engine = CalibrationEngine(on_data_quality=warnings.append)
    assert _thermostat(engine, 19.0, 0.0, T0) is None

    assert _sensor(engine, OFFICE, 1e30, T0 + SECOND) is None

    assert len(warnings) == 1
    assert warnings[0].identifier == OFFICE
    assert OFFICE not in engine.location_state("office").sensors


@pytest.mark.parametrize(
    "event",
    [
        {"identifier": OFFICE, "payload": 21.5},
        {"payload": {"temperature": 21.5}},
        {"identifier": OFFICE, "payload": {"temperature": 21.5}, "timestamp": -5},
        {"identifier": OFFICE, "payload": {"temperature": 21.5}, "timestamp": "yesterday"},
    ],
)
def test_malformed_event_envelope_is_dropped(event: dict[str, object]) -> None:
    engine = CalibrationEngine()

    assert engine.handle(event) is None
    assert engine.location_state("office") == LocationState()


def test_concurrent_events_do_not_lose_updates() -> None:
    engine = CalibrationEngine()
    identifiers = [OFFICE, OFFICE_2, "zigbee2mqtt/temp_office", "sensor.temp_kitchen"]
    rounds = 200
    barrier = threading.Barrier(len(identifiers))
    errors: list[Exception] = []

    def feed(identifier: str) -> None:
        try:
            barrier.wait()
            for i in range(rounds):
                _sensor(engine, identifier, 20.0 + i / 100, T0 + i)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=feed, args=(identifier,)) for identifier in identifiers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    office = engine.location_state("office")
    assert set(office.sensors) == {OFFICE, OFFICE_2, "zigbee2mqtt/temp_office"}
    for reading in office.sensors.values():
        assert reading.observed_at == T0 + rounds - 1
    kitchen = engine.location_state("kitchen")
    assert set(kitchen.sensors) == {"sensor.temp_kitchen"}

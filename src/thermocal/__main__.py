"""Run the calibration engine against an MQTT broker.

Usage::

    python -m thermocal --config thermocal.json --host broker.local
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import threading
from typing import Any

from thermocal._mqtt import ThermocalMqttRuntime
from thermocal.config import CalibrationConfig
from thermocal.engine import CalibrationEngine, DataQualityWarning
from thermocal.exceptions import ThermocalConfigError

_LOG = logging.getLogger("thermocal")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="thermocal",
        description="Calibrate thermostats against external room sensors over MQTT.",
    )
    parser.add_argument(
        "--config",
        help="JSON configuration file (defaults to $THERMOCAL_CONFIG).",
    )
    parser.add_argument("--host", help="MQTT broker host.")
    parser.add_argument("--port", type=int, help="MQTT broker port.")
    parser.add_argument(
        "--subscribe",
        action="append",
        metavar="TOPIC",
        help="Topic filter to subscribe to (repeatable).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable DEBUG logging.",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CalibrationConfig:
    """Merge env/file configuration with command-line overrides."""
    overrides: dict[str, Any] = {}
    if args.host:
        overrides["mqtt_host"] = args.host
    if args.port:
        overrides["mqtt_port"] = args.port
    if args.subscribe:
        overrides["subscriptions"] = tuple(args.subscribe)
    if args.debug:
        overrides["debug"] = True

    if args.config:
        return dataclasses.replace(CalibrationConfig.from_file(args.config), **overrides)
    return CalibrationConfig.from_env(**overrides)


def _on_data_quality(warning: DataQualityWarning) -> None:
    _LOG.debug("Data quality payload from %s: %s", warning.identifier, warning.payload)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        config = build_config(args)
    except ThermocalConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        _LOG.error("Invalid configuration: %s", exc)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = CalibrationEngine(config, on_data_quality=_on_data_quality)
    runtime = ThermocalMqttRuntime(engine=engine)

    stop = threading.Event()

    def _handle_signal(signum: int, _frame: Any) -> None:
        _LOG.info("Received signal %s, stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    runtime.start()
    _LOG.info("Listening on %s:%s", config.mqtt_host, config.mqtt_port)
    try:
        stop.wait()
    finally:
        runtime.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

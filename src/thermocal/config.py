"""Engine configuration for thermocal."""

from __future__ import annotations

import dataclasses
import enum
import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from thermocal._constants import (
    COMMAND_PAYLOAD_KEY,
    COMMAND_SUFFIX,
    DEFAULT_COOLDOWN_MS,
    DEFAULT_HYSTERESIS,
    DEFAULT_RATE_LIMIT,
    DEFAULT_RATE_WINDOW_MS,
    DEFAULT_STEP,
    STORE_PREFIX,
)
from thermocal.aggregation import DecayCurve
from thermocal.discovery import DiscoveryRule, default_rules
from thermocal.exceptions import ThermocalConfigError


class TriggerPolicy(enum.StrEnum):
    """Which device report starts a recalculation."""

    SENSOR = "sensor"
    THERMOSTAT = "thermostat"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class CalibrationConfig:
    """Engine configuration, loaded once at startup.

    Parameters
    ----------
    rules : tuple of DiscoveryRule
        Ordered discovery rules; the first match wins.
    step : float
        Calibration granularity of the thermostat (e.g. ``0.2`` °C).
    hysteresis : float
        Dead-band as a fraction of ``step`` (0-1). Unrounded calibrations
        within ``step * hysteresis`` of the previous value are ignored.
    decay : DecayCurve
        Weight-by-age function for sensor readings.
    cooldown_ms : int
        Minimum spacing between two commands for one location.
    rate_limit : int
        Maximum commands per location within ``rate_window_ms``
        (``0`` disables the limit).
    rate_window_ms : int
        Rolling rate-limit window.
    command_suffix : str
        Suffix appended to a thermostat topic to address commands to it.
        Inbound identifiers carrying it are ignored.
    store_prefix : str
        Prefix of the key-value keys holding location records.
    command_payload_key : str
        Payload key carrying the offset in outgoing commands.
    trigger : TriggerPolicy
        ``SENSOR`` recalculates on fresh sensor readings only;
        ``THERMOSTAT`` recalculates on thermostat reports outside cooldown.
    debug : bool
        Enable DEBUG logging from the command-line runner.
    mqtt_host, mqtt_port, mqtt_keepalive, mqtt_username, mqtt_password, mqtt_tls
        Broker connection used by the MQTT runtime.
    subscriptions : tuple of str
        Topic filters the MQTT runtime subscribes to.
    """

    rules: tuple[DiscoveryRule, ...] = dataclasses.field(default_factory=default_rules)
    step: float = DEFAULT_STEP
    hysteresis: float = DEFAULT_HYSTERESIS
    decay: DecayCurve = dataclasses.field(default_factory=DecayCurve)
    cooldown_ms: int = DEFAULT_COOLDOWN_MS
    rate_limit: int = DEFAULT_RATE_LIMIT
    rate_window_ms: int = DEFAULT_RATE_WINDOW_MS
    command_suffix: str = COMMAND_SUFFIX
    store_prefix: str = STORE_PREFIX
    command_payload_key: str = COMMAND_PAYLOAD_KEY
    trigger: TriggerPolicy = TriggerPolicy.SENSOR
    debug: bool = False
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    subscriptions: tuple[str, ...] = ("#",)

    def __post_init__(self) -> None:
        if not self.rules:
            raise ThermocalConfigError("At least one discovery rule is required")
        if self.step <= 0:
            raise ThermocalConfigError(f"step must be positive, got {self.step}")
        if not 0.0 <= self.hysteresis <= 1.0:
            raise ThermocalConfigError(f"hysteresis must be within [0, 1], got {self.hysteresis}")
        if self.cooldown_ms < 0 or self.rate_window_ms < 0 or self.rate_limit < 0:
            raise ThermocalConfigError("cooldown, rate limit and rate window must not be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CalibrationConfig:
        """Create configuration from a JSON-shaped mapping.

        ``rules`` is a list of ``{"pattern", "kind" | "type", "base_weight"}``
        objects; ``decay`` is ``{"points": [[age, weight], ...], "mode": ...}``.
        Unknown keys raise :class:`ThermocalConfigError`.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ThermocalConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = dict(data)
        if "rules" in kwargs:
            try:
                kwargs["rules"] = tuple(
                    rule if isinstance(rule, DiscoveryRule) else DiscoveryRule.model_validate(rule)
                    for rule in kwargs["rules"]
                )
            except ValidationError as exc:
                raise ThermocalConfigError(f"Invalid discovery rule: {exc}") from exc
        decay = kwargs.get("decay")
        if isinstance(decay, Mapping):
            kwargs["decay"] = DecayCurve.from_points(decay.get("points", ()), decay.get("mode", "step"))
        if "trigger" in kwargs:
            try:
                kwargs["trigger"] = TriggerPolicy(kwargs["trigger"])
            except ValueError as exc:
                raise ThermocalConfigError(f"Unknown trigger policy {kwargs['trigger']!r}") from exc
        if "subscriptions" in kwargs:
            kwargs["subscriptions"] = tuple(kwargs["subscriptions"])

        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> CalibrationConfig:
        """Load configuration from a JSON file."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ThermocalConfigError(f"Cannot read configuration file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ThermocalConfigError(f"Configuration file {path} must contain a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, **overrides: Any) -> CalibrationConfig:
        """Create configuration from environment variables.

        Reads ``THERMOCAL_CONFIG`` (path to a JSON file) as the base and
        then scalar ``THERMOCAL_*`` variables on top. Explicit keyword
        arguments override both.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        CalibrationConfig
            Populated configuration.
        """
        env = os.environ

        path = env.get("THERMOCAL_CONFIG")
        base = cls.from_file(path) if path else cls()

        config_kwargs: dict[str, Any] = {}

        _ENV_CONFIG_MAP: dict[str, tuple[str, type]] = {
            "THERMOCAL_STEP": ("step", float),
            "THERMOCAL_HYSTERESIS": ("hysteresis", float),
            "THERMOCAL_COOLDOWN_MS": ("cooldown_ms", int),
            "THERMOCAL_RATE_LIMIT": ("rate_limit", int),
            "THERMOCAL_RATE_WINDOW_MS": ("rate_window_ms", int),
            "THERMOCAL_COMMAND_SUFFIX": ("command_suffix", str),
            "THERMOCAL_STORE_PREFIX": ("store_prefix", str),
            "THERMOCAL_TRIGGER": ("trigger", TriggerPolicy),
            "THERMOCAL_MQTT_HOST": ("mqtt_host", str),
            "THERMOCAL_MQTT_PORT": ("mqtt_port", int),
            "THERMOCAL_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "THERMOCAL_MQTT_USERNAME": ("mqtt_username", str),
            "THERMOCAL_MQTT_PASSWORD": ("mqtt_password", str),
        }
        for env_key, (field_name, convert) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = convert(val)
            except ValueError as exc:
                raise ThermocalConfigError(f"Invalid value for {env_key}: {val!r}") from exc

        if "debug" not in overrides:
            config_kwargs["debug"] = _env_bool(env.get("THERMOCAL_DEBUG"), base.debug)
        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("THERMOCAL_MQTT_TLS"), base.mqtt_tls)

        config_kwargs.update(overrides)

        return dataclasses.replace(base, **config_kwargs)

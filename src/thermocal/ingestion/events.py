"""Inbound event envelope and per-kind payload schemas.

The device kind always comes from discovery; payloads are validated
against that kind's schema and never sniffed to guess what sent them.
"""

from __future__ import annotations

from typing import Annotated, Any, cast

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from thermocal._constants import MAX_PLAUSIBLE_CALIBRATION, MAX_PLAUSIBLE_TEMPERATURE, MIN_PLAUSIBLE_TEMPERATURE
from thermocal.discovery import DeviceKind
from thermocal.exceptions import ThermocalPayloadError
from thermocal.ingestion.normalize import normalize_marker, normalize_timestamp_ms

Marker = Annotated[str | None, BeforeValidator(normalize_marker)]
"""Annotated type that coerces ISO strings or epoch numbers to a marker string."""

# Strict so that ``"21.5"`` or ``True`` is rejected rather than coerced.
_STRICT_TEMP: dict[str, Any] = {
    "strict": True,
    "allow_inf_nan": False,
    "ge": MIN_PLAUSIBLE_TEMPERATURE,
    "le": MAX_PLAUSIBLE_TEMPERATURE,
}
_STRICT_OFFSET: dict[str, Any] = {
    "strict": True,
    "allow_inf_nan": False,
    "ge": -MAX_PLAUSIBLE_CALIBRATION,
    "le": MAX_PLAUSIBLE_CALIBRATION,
}


class InboundEvent(BaseModel):
    """A device message as delivered by the transport."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    identifier: str = Field(..., validation_alias=AliasChoices("identifier", "topic"))
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: int | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "ts"),
        description="Epoch milliseconds, kept as given; the engine clock is used when absent.",
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> int | None:
        return normalize_timestamp_ms(value)


class _DevicePayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    last_seen: Marker = Field(default=None, validation_alias=AliasChoices("last_seen", "lastSeenMarker"))


class SensorPayload(_DevicePayload):
    """Report from an external room sensor."""

    temperature: float = Field(..., **_STRICT_TEMP)


class ThermostatPayload(_DevicePayload):
    """Report from a thermostat (zigbee2mqtt TRV naming)."""

    local_temperature: float = Field(
        ...,
        validation_alias=AliasChoices("local_temperature", "localTemperature"),
        **_STRICT_TEMP,
    )
    local_temperature_calibration: float = Field(
        default=0.0,
        validation_alias=AliasChoices("local_temperature_calibration", "localCalibration"),
        **_STRICT_OFFSET,
    )

    @field_validator("local_temperature_calibration", mode="before")
    @classmethod
    def _missing_calibration_is_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value


_SCHEMAS: dict[DeviceKind, type[_DevicePayload]] = {
    DeviceKind.SENSOR: SensorPayload,
    DeviceKind.THERMOSTAT: ThermostatPayload,
}


def payload_marker(payload: dict[str, Any]) -> str | None:
    """Freshness marker of a raw payload, without validating the rest of it."""
    return normalize_marker(payload.get("last_seen", payload.get("lastSeenMarker")))


def parse_payload(
    kind: DeviceKind,
    payload: dict[str, Any],
    *,
    identifier: str = "",
) -> SensorPayload | ThermostatPayload:
    """Validate *payload* against the schema for *kind*.

    Raises :class:`ThermocalPayloadError` when a required temperature is
    missing, not a finite number or outside the plausible range.
    """
    schema = _SCHEMAS[kind]
    try:
        parsed = schema.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in exc.errors())
        raise ThermocalPayloadError(
            f"{kind} payload rejected ({fields})",
            identifier=identifier,
            kind=str(kind),
        ) from exc
    return cast(SensorPayload | ThermostatPayload, parsed)

"""Outbound calibration command."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict

from thermocal._constants import COMMAND_PAYLOAD_KEY
from thermocal.models._base import ThermocalModel


class CalibrationCommand(ThermocalModel):
    """New calibration offset addressed to a thermostat's command topic."""

    model_config = ConfigDict(frozen=True)

    target_topic: str
    calibration_offset: float

    def to_payload(self, key: str = COMMAND_PAYLOAD_KEY) -> dict[str, Any]:
        """Return the device-facing payload, e.g. ``{"local_temperature_calibration": 1.6}``."""
        return {key: self.calibration_offset}

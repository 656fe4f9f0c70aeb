"""Calibration offset computation and the act/no-act decision."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, getcontext, localcontext

from thermocal.models.state import ThermostatSnapshot

_logger = logging.getLogger(__name__)


class DecisionReason(enum.StrEnum):
    APPLY = "apply"
    UNCHANGED = "unchanged"
    WITHIN_DEADBAND = "within_deadband"


def _step_decimals(step: Decimal) -> int:
    exponent = step.normalize().as_tuple().exponent
    if not isinstance(exponent, int):
        return 0
    return max(0, -exponent)


def round_to_step(value: float, step: float) -> float:
    """Round *value* to the nearest multiple of *step*.

    Halves round away from zero, including negative ones: ``-1.7`` with a
    ``0.2`` step becomes ``-1.8`` where JavaScript-style ``Math.round`` would
    give ``-1.6``. The multiplication happens in
    :class:`~decimal.Decimal` and the result is fixed to the number of
    decimals the step needs, so ``round_to_step(1.6667, 0.2)`` is exactly
    ``1.6`` rather than ``1.6000000000000001``.

    Raises :class:`ValueError` if *step* is not positive.
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")

    step_dec = Decimal(str(step))
    value_dec = Decimal(str(value))
    decimals = _step_decimals(step_dec)
    with localcontext() as ctx:
        # Room for every integer digit of value / step plus the step's decimals.
        ctx.prec = max(getcontext().prec, value_dec.adjusted() - step_dec.adjusted() + decimals + 4)
        multiples = (value_dec / step_dec).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        rounded = (multiples * step_dec).quantize(Decimal(1).scaleb(-decimals))
    # Adding 0.0 folds -0.0 into 0.0.
    return float(rounded) + 0.0


@dataclass(frozen=True)
class CalibrationDecision:
    raw_internal_temperature: float
    exact_calibration: float
    rounded_calibration: float
    previous_calibration: float
    reason: DecisionReason

    @property
    def should_act(self) -> bool:
        return self.reason == DecisionReason.APPLY


def decide(
    thermostat: ThermostatSnapshot,
    average_temperature: float,
    previous_calibration: float,
    *,
    step: float,
    hysteresis: float,
) -> CalibrationDecision:
    """Work out the calibration that makes the thermostat read *average_temperature*.

    No action is proposed when the rounded value equals the previous one, or
    when the unrounded value lies within ``step * hysteresis`` of it.
    """
    raw_internal = thermostat.raw_internal_temperature
    exact = average_temperature - raw_internal
    rounded = round_to_step(exact, step)

    if rounded == previous_calibration:
        reason = DecisionReason.UNCHANGED
    elif abs(exact - previous_calibration) <= step * hysteresis:
        reason = DecisionReason.WITHIN_DEADBAND
    else:
        reason = DecisionReason.APPLY

    _logger.debug(
        "Calc: average=%.2f thermostat=%s raw_internal=%.2f exact=%.3f rounded=%s previous=%s -> %s",
        average_temperature,
        thermostat.reported_temperature,
        raw_internal,
        exact,
        rounded,
        previous_calibration,
        reason,
    )
    return CalibrationDecision(
        raw_internal_temperature=raw_internal,
        exact_calibration=exact,
        rounded_calibration=rounded,
        previous_calibration=previous_calibration,
        reason=reason,
    )

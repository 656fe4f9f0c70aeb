"""Time-weighted aggregation of sensor readings.

Each reading's influence is ``base_weight * w(age)`` where ``w`` is a
non-increasing :class:`DecayCurve`. Readings whose weight has dropped to
zero are pruned from the returned set so stale sensors do not linger in
state forever.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from thermocal._constants import DEFAULT_DECAY_POINTS, MS_PER_MINUTE
from thermocal.exceptions import ThermocalConfigError
from thermocal.models.state import SensorReading

_logger = logging.getLogger(__name__)


class DecayMode(enum.StrEnum):
    STEP = "step"
    LINEAR = "linear"


@dataclass(frozen=True)
class DecayCurve:
    """Weight-by-age function defined by ``(age_minutes, weight)`` control points.

    Parameters
    ----------
    points : tuple of (float, float)
        Control points ordered by strictly increasing age. Weights must be
        within ``[0, 1]`` and non-increasing.
    mode : DecayMode
        ``STEP`` treats each point as a tier: a reading up to ``age`` minutes
        old gets that tier's weight. ``LINEAR`` interpolates between
        consecutive points. Either way the weight is 0 past the last point.
    """

    points: tuple[tuple[float, float], ...] = DEFAULT_DECAY_POINTS
    mode: DecayMode = DecayMode.STEP

    def __post_init__(self) -> None:
        if not self.points:
            raise ThermocalConfigError("Decay curve needs at least one control point")
        previous_age: float | None = None
        previous_weight: float | None = None
        for age, weight in self.points:
            if age < 0:
                raise ThermocalConfigError(f"Decay curve age must be >= 0, got {age}")
            if not 0.0 <= weight <= 1.0:
                raise ThermocalConfigError(f"Decay curve weight must be within [0, 1], got {weight}")
            if previous_age is not None and age <= previous_age:
                raise ThermocalConfigError("Decay curve ages must be strictly increasing")
            if previous_weight is not None and weight > previous_weight:
                raise ThermocalConfigError("Decay curve weights must be non-increasing")
            previous_age, previous_weight = age, weight

    @classmethod
    def from_points(cls, points: Iterable[Iterable[float]], mode: DecayMode | str = DecayMode.STEP) -> DecayCurve:
        try:
            normalized = tuple((float(age), float(weight)) for age, weight in points)
            decay_mode = DecayMode(mode)
        except (TypeError, ValueError) as exc:
            raise ThermocalConfigError(f"Invalid decay curve: {exc}") from exc
        return cls(points=normalized, mode=decay_mode)

    @property
    def max_age(self) -> float:
        return self.points[-1][0]

    def weight(self, age_minutes: float) -> float:
        age = max(0.0, age_minutes)
        if age > self.max_age:
            return 0.0

        if self.mode == DecayMode.STEP:
            for max_age, weight in self.points:
                if age <= max_age:
                    return weight
            return 0.0

        first_age, first_weight = self.points[0]
        if age <= first_age:
            return first_weight
        for (age_a, weight_a), (age_b, weight_b) in zip(self.points, self.points[1:], strict=False):
            if age <= age_b:
                fraction = (age - age_a) / (age_b - age_a)
                return weight_a + (weight_b - weight_a) * fraction
        return 0.0


@dataclass(frozen=True)
class AggregateResult:
    """Outcome of one aggregation pass.

    ``average_temperature`` is ``None`` whenever ``valid_count`` is 0.
    """

    average_temperature: float | None
    valid_count: int
    total_weight: float
    retained: dict[str, SensorReading] = field(default_factory=dict)


def age_minutes(now_ms: int, observed_at_ms: int) -> float:
    return (now_ms - observed_at_ms) / MS_PER_MINUTE


def aggregate(
    sensors: Mapping[str, SensorReading],
    now_ms: int,
    curve: DecayCurve | None = None,
) -> AggregateResult:
    """Weighted average of the readings that still carry weight at ``now_ms``."""
    decay = curve or DecayCurve()

    weighted_sum = 0.0
    total_weight = 0.0
    retained: dict[str, SensorReading] = {}

    for sensor_id, reading in sensors.items():
        age = age_minutes(now_ms, reading.observed_at)
        time_weight = decay.weight(age)
        final_weight = reading.base_weight * time_weight
        if final_weight <= 0:
            _logger.debug("Dropping expired reading %s (age %.1fm)", sensor_id, age)
            continue

        _logger.debug(
            "Reading %s temp=%s age=%.1fm time_weight=%s base_weight=%s final_weight=%.2f",
            sensor_id,
            reading.temperature,
            age,
            time_weight,
            reading.base_weight,
            final_weight,
        )
        weighted_sum += reading.temperature * final_weight
        total_weight += final_weight
        retained[sensor_id] = reading

    if total_weight <= 0:
        return AggregateResult(average_temperature=None, valid_count=0, total_weight=0.0, retained=retained)

    return AggregateResult(
        average_temperature=weighted_sum / total_weight,
        valid_count=len(retained),
        total_weight=total_weight,
        retained=retained,
    )

"""Device discovery from identifier strings.

Identifiers (MQTT topics, entity ids) are matched against an ordered list
of :class:`DiscoveryRule` patterns. The first rule whose pattern matches
wins and its single capture group names the location.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from thermocal._constants import COMMAND_SUFFIX, DEFAULT_DISCOVERY_RULES
from thermocal.exceptions import ThermocalConfigError

_logger = logging.getLogger(__name__)


class DeviceKind(enum.StrEnum):
    SENSOR = "sensor"
    THERMOSTAT = "thermostat"


class DiscoveryRule(BaseModel):
    """One ``pattern -> (kind, base weight)`` mapping."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str
    kind: DeviceKind = Field(validation_alias=AliasChoices("kind", "type"))
    base_weight: float = Field(default=1.0, ge=0.0, validation_alias=AliasChoices("base_weight", "baseWeight"))

    @field_validator("pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        try:
            compiled = re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid pattern {value!r}: {exc}") from exc
        if compiled.groups < 1:
            raise ValueError(f"pattern {value!r} needs a capture group for the location")
        return value


@dataclass(frozen=True, slots=True)
class DeviceMatch:
    """Result of classifying an identifier."""

    identifier: str
    location: str
    kind: DeviceKind
    base_weight: float


def default_rules() -> tuple[DiscoveryRule, ...]:
    return tuple(
        DiscoveryRule(pattern=pattern, kind=DeviceKind(kind), base_weight=weight)
        for pattern, kind, weight in DEFAULT_DISCOVERY_RULES
    )


def is_command_topic(identifier: str, suffix: str = COMMAND_SUFFIX) -> bool:
    """Return ``True`` for identifiers addressing a command *to* a device."""
    return bool(suffix) and identifier.endswith(suffix)


class TopicClassifier:
    """Ordered, first-match-wins classifier."""

    def __init__(self, rules: Iterable[DiscoveryRule]) -> None:
        self._rules: list[tuple[re.Pattern[str], DiscoveryRule]] = []
        for rule in rules:
            try:
                self._rules.append((re.compile(rule.pattern), rule))
            except re.error as exc:
                raise ThermocalConfigError(f"Invalid discovery pattern {rule.pattern!r}: {exc}") from exc
        if not self._rules:
            raise ThermocalConfigError("At least one discovery rule is required")

    @property
    def rules(self) -> tuple[DiscoveryRule, ...]:
        return tuple(rule for _, rule in self._rules)

    def classify(self, identifier: str) -> DeviceMatch | None:
        if not identifier:
            return None

        for regex, rule in self._rules:
            match = regex.search(identifier)
            if match is None:
                continue
            location = match.group(1)
            if not location:
                # An empty location id cannot key state; let later rules try.
                continue
            _logger.debug(
                "Identifier %s matched rule %s -> location=%s kind=%s weight=%s",
                identifier,
                rule.pattern,
                location,
                rule.kind,
                rule.base_weight,
            )
            return DeviceMatch(
                identifier=identifier,
                location=location,
                kind=rule.kind,
                base_weight=rule.base_weight,
            )

        _logger.debug("Identifier %s did not match any discovery rule", identifier)
        return None

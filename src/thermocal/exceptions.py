"""Custom exception hierarchy for thermocal."""

from __future__ import annotations


class ThermocalError(Exception):
    """Base exception for all thermocal errors."""


class ThermocalConfigError(ThermocalError):
    """Invalid or missing configuration.

    Raised at startup only: bad discovery patterns, a non-monotonic decay
    curve, or out-of-range numeric settings.
    """


class ThermocalPayloadError(ThermocalError):
    """Device payload does not match the schema of its declared kind."""

    def __init__(
        self,
        message: str,
        *,
        identifier: str = "",
        kind: str = "",
    ) -> None:
        self.identifier = identifier
        self.kind = kind
        super().__init__(message)

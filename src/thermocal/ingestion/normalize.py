"""Normalization helpers.

Centralizes defensive parsing of timestamps and freshness markers.
"""

from __future__ import annotations

import math
from typing import Any


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize a carried event timestamp to integer epoch milliseconds.

    - Empty/missing -> None (the engine clock is used instead)
    - Non-negative finite number or numeric string -> int, unit unchanged
    - Anything else raises :class:`ValueError`
    """

    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("timestamp must be a number, not a boolean")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"timestamp must not be negative, got {value}")
        return value
    try:
        ts = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"timestamp must be a number, got {value!r}") from exc
    if math.isnan(ts) or math.isinf(ts) or ts < 0:
        raise ValueError(f"timestamp must be a finite non-negative number, got {value!r}")
    return int(ts)


def normalize_marker(value: Any) -> str | None:
    """Turn a ``last_seen`` value (ISO string or epoch number) into a comparable string."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text if text else None

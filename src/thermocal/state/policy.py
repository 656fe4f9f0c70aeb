"""Command emission policy: cooldown and rolling-window rate limit.

Both checks gate only outgoing commands. Nothing here is consulted while
ingesting readings, so a location inside its cooldown still accumulates
fresh data.
"""

from __future__ import annotations

import logging

from thermocal._constants import DEFAULT_COOLDOWN_MS, DEFAULT_RATE_LIMIT, DEFAULT_RATE_WINDOW_MS
from thermocal.models.state import LocationState

_logger = logging.getLogger(__name__)


def in_cooldown(state: LocationState, now_ms: int, cooldown_ms: int) -> bool:
    """Whether the last action on *state* is younger than *cooldown_ms*."""
    if state.last_action_at <= 0:
        return False
    return (now_ms - state.last_action_at) < cooldown_ms


def prune_action_timestamps(timestamps: list[int], now_ms: int, window_ms: int) -> list[int]:
    """Keep the timestamps that still fall inside the rolling window."""
    cutoff = now_ms - window_ms
    return [ts for ts in timestamps if ts >= cutoff]


class CommandLimiter:
    """Per-location cooldown and rate limit.

    Operates on the event's local :class:`LocationState` copy: a granted
    permit records ``now`` in the copy, and the caller persists it together
    with the calibration it is about to send.

    Parameters
    ----------
    cooldown_ms : int
        Minimum spacing between two commands for the same location.
    limit : int
        Maximum commands per ``window_ms``. ``0`` disables the rate limit.
    window_ms : int
        Length of the rolling rate-limit window.
    """

    def __init__(
        self,
        *,
        cooldown_ms: int = DEFAULT_COOLDOWN_MS,
        limit: int = DEFAULT_RATE_LIMIT,
        window_ms: int = DEFAULT_RATE_WINDOW_MS,
    ) -> None:
        self.cooldown_ms = cooldown_ms
        self.limit = limit
        self.window_ms = window_ms

    def permit(self, state: LocationState, now_ms: int) -> bool:
        if in_cooldown(state, now_ms, self.cooldown_ms):
            _logger.info(
                "Command suppressed by cooldown (%dms remaining)",
                self.cooldown_ms - (now_ms - state.last_action_at),
            )
            return False

        state.action_timestamps = prune_action_timestamps(state.action_timestamps, now_ms, self.window_ms)
        if self.limit > 0 and len(state.action_timestamps) >= self.limit:
            _logger.info(
                "Command suppressed by rate limit (%d actions in the last %dms)",
                len(state.action_timestamps),
                self.window_ms,
            )
            return False

        state.action_timestamps.append(now_ms)
        state.last_action_at = now_ms
        return True

"""Per-location state store on top of a key-value backend.

This is the only component allowed to read or replace location records.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Protocol

from thermocal._constants import STORE_PREFIX
from thermocal.models.state import LocationState


class KeyValueBackend(Protocol):
    """Minimal persistence contract: JSON-compatible dicts by string key."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...


class InMemoryBackend:
    """Dict-backed :class:`KeyValueBackend`.

    Values are deep-copied in both directions so callers never share
    mutable structure with the stored record.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class LocationStateStore:
    """Read and replace whole :class:`LocationState` records.

    ``get`` always returns an independent copy (a fresh default for unknown
    locations, which is *not* written until ``put``). ``put`` replaces the
    full record, so a handler's changes become visible all at once.
    """

    def __init__(self, backend: KeyValueBackend | None = None, *, prefix: str = STORE_PREFIX) -> None:
        self._backend: KeyValueBackend = backend if backend is not None else InMemoryBackend()
        self._prefix = prefix

    def key_for(self, location: str) -> str:
        return f"{self._prefix}{location}"

    def get(self, location: str) -> LocationState:
        record = self._backend.get(self.key_for(location))
        if record is None:
            return LocationState()
        return LocationState.model_validate(record)

    def put(self, location: str, state: LocationState) -> None:
        self._backend.set(self.key_for(location), state.to_record())

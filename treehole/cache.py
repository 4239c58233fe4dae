"""A thread-safe in-memory cache that stores values as JSON."""

from __future__ import annotations

import dataclasses
import json
import threading
import time
from datetime import date, datetime, timedelta
from typing import Any

Expiration = float | timedelta | None


def _encode(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"cannot cache value of type {type(value).__name__}")


def _seconds(expiration: float | timedelta) -> float:
    if isinstance(expiration, timedelta):
        return expiration.total_seconds()
    return float(expiration)


class Cache:
    """Key/value cache; an expiration of 0 means the entry never expires."""

    def __init__(self, default_expiration: float | timedelta = 300.0) -> None:
        self.default_expiration = _seconds(default_expiration)
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, expiration: Expiration = None) -> None:
        data = json.dumps(value, default=_encode, ensure_ascii=False)
        seconds = self.default_expiration if expiration is None else _seconds(expiration)
        deadline = None if seconds == 0 else time.monotonic() + seconds
        with self._lock:
            self._entries[key] = (data, deadline)

    def get(self, key: str) -> Any:
        """Return a fresh copy of the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, deadline = entry
            if deadline is not None and time.monotonic() >= deadline:
                del self._entries[key]
                return None
        return json.loads(data)

    def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        with self._lock:
            self._entries.pop(key, None)
"""Last-known feature values for change suppression and delta filtering."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

_ABSENT = object()


class ValueCache:
    """One slot per feature id, overwritten in place.

    Besides the last observed value, each slot remembers the last value that
    was flagged store-worthy; numeric deltas are measured against that one so
    slow drifts below the threshold still get persisted eventually.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._stored: dict[str, Any] = {}

    def seed(self, values: Mapping[str, Any], feature_ids: Iterable[str] = ()) -> None:
        for feature_id, value in values.items():
            self._values[feature_id] = value
            self._stored[feature_id] = value
        for feature_id in feature_ids:
            self._values.setdefault(feature_id, None)

    def __contains__(self, feature_id: str) -> bool:
        return self._values.get(feature_id) is not None

    def get(self, feature_id: str, default: Any = None) -> Any:
        value = self._values.get(feature_id)
        return default if value is None else value

    def set(self, feature_id: str, value: Any) -> None:
        self._values[feature_id] = value

    def changed(self, feature_id: str, value: Any) -> bool:
        cached = self._values.get(feature_id, _ABSENT)
        if cached is _ABSENT or cached is None:
            return True
        return cached != value or _kind(cached) != _kind(value)

    def delta(self, feature_id: str, value: float) -> float:
        baseline = self._stored.get(feature_id)
        if baseline is None or isinstance(baseline, bool):
            return math.inf
        try:
            return abs(float(value) - float(baseline))
        except (TypeError, ValueError):
            return math.inf

    def mark_stored(self, feature_id: str, value: Any) -> None:
        self._stored[feature_id] = value

    def items(self) -> list[tuple[str, Any]]:
        return [(k, v) for k, v in self._values.items() if v is not None]


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__

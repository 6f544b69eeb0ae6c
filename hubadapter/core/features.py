"""Lookup over a device's declared features."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from hubadapter.core.model import Feature


class FeatureDirectory:
    """Resolves features by type tag, id, or display name.

    The directory never mutates; when the host delivers a new device record
    the adapter builds a new directory from it.
    """

    def __init__(self, features: Sequence[Feature]) -> None:
        self._features: tuple[Feature, ...] = tuple(features)

    def __iter__(self):
        return iter(self._features)

    def __len__(self) -> int:
        return len(self._features)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(f.id for f in self._features)

    def get(self, feature_id: str) -> Feature | None:
        for feature in self._features:
            if feature.id == feature_id:
                return feature
        return None

    def resolve(self, query: str) -> Feature | None:
        for feature in self._features:
            if query in feature.types:
                return feature
        for feature in self._features:
            if feature.id == query:
                return feature
        for feature in self._features:
            if feature.name == query:
                return feature
        return None

    def has_tag(self, tag: str) -> bool:
        return any(tag in feature.types for feature in self._features)

    def missing(self, tags: Iterable[str]) -> list[str]:
        return [tag for tag in tags if not self.has_tag(tag)]

    def with_sub_id(self, key: str, value: str) -> Feature | None:
        """Find the feature tagged ``key:value`` (e.g. ``pin:3``)."""
        return self.resolve(f"{key}:{value}")

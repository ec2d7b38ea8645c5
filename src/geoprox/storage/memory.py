"""In-process store backed directly by a `ProximityIndex` (no durability)."""

from __future__ import annotations

from typing import Iterator

from geoprox.core.geo import GeoPoint
from geoprox.core.spatial_index import IndexedEntry, Neighbor, ProximityIndex
from geoprox.domain.models import Place


class MemoryStore:
    name = "memory"

    def __init__(self, index: ProximityIndex[Place] | None = None):
        self._index: ProximityIndex[Place] = index if index is not None else ProximityIndex()

    @property
    def index(self) -> ProximityIndex[Place]:
        return self._index

    def insert(self, entry: IndexedEntry[Place]) -> None:
        self._index.insert(entry.point, entry.payload, entry_id=entry.id)

    def remove(self, entry_id: str) -> None:
        self._index.remove(entry_id)

    def query(self, center: GeoPoint, radius_m: float) -> list[Neighbor[Place]]:
        return self._index.search(center, radius_m)

    def iter_entries(self) -> Iterator[IndexedEntry[Place]]:
        return iter(self._index)

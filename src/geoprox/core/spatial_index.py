"""
Proximity index (grid bucket) for lat/lon points.

Answers "which entries lie within R meters of C" without an O(N) scan:
1) a grid keyed by truncated lat/lon cells prunes candidates to the cells covering the
   query circle's bounding box,
2) the exact great-circle (or ellipsoidal) distance is applied to what survives.

Never compare raw degrees as if they were flat: a degree of longitude shrinks by
cos(latitude), so degree-distance is only proportional to ground distance at the equator.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Iterator, TypeVar

from geoprox.core.errors import InvalidQuery, NotFound
from geoprox.core.geo import (
    EARTH_MEAN_RADIUS_M,
    BoundingBox,
    DistanceFn,
    GeoPoint,
    as_point,
    bounding_box,
    make_distance_fn,
    meters_per_degree,
)
from geoprox.core.locking import ReadWriteLock

T = TypeVar("T")

CellKey = tuple[int, int]


@dataclass(frozen=True)
class IndexedEntry(Generic[T]):
    """A stored point plus its identifier and opaque payload."""

    id: str
    point: GeoPoint
    payload: T


@dataclass(frozen=True)
class Neighbor(Generic[T]):
    """A query hit: the entry and its distance to the query center."""

    entry: IndexedEntry[T]
    distance_m: float


@dataclass(frozen=True)
class IndexStats:
    entries: int
    occupied_cells: int
    max_entries_per_cell: int
    mean_entries_per_cell: float
    cell_size_m: float
    distance_model: str

    def as_dict(self) -> dict[str, object]:
        return {
            "entries": int(self.entries),
            "occupied_cells": int(self.occupied_cells),
            "max_entries_per_cell": int(self.max_entries_per_cell),
            "mean_entries_per_cell": round(float(self.mean_entries_per_cell), 3),
            "cell_size_m": float(self.cell_size_m),
            "distance_model": self.distance_model,
        }


def validate_radius(radius_m: object) -> float:
    """Return `radius_m` as a finite, non-negative float or raise `InvalidQuery`."""
    try:
        r = float(radius_m)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidQuery(f"radius_m must be a number, got {radius_m!r}") from e
    if not math.isfinite(r) or r < 0:
        raise InvalidQuery(f"radius_m must be a finite number >= 0, got {radius_m!r}")
    return r


def _in_box(point: GeoPoint, box: BoundingBox) -> bool:
    if point.lat < box.lat_min or point.lat > box.lat_max:
        return False
    return any(lo <= point.lon <= hi for lo, hi in box.lon_ranges)


class ProximityIndex(Generic[T]):
    """Thread-safe grid index over `IndexedEntry` items.

    `cell_size_m` trades memory for prune effectiveness: cells much smaller than the
    typical query radius mean more dictionary lookups per query; much larger cells mean
    more exact distance evaluations.
    """

    def __init__(
        self,
        *,
        cell_size_m: float = 1000.0,
        distance_model: str = "haversine",
        prune_margin: float = 0.01,
        earth_radius_m: float = EARTH_MEAN_RADIUS_M,
    ):
        if float(cell_size_m) <= 0:
            raise ValueError("cell_size_m must be > 0")
        if float(prune_margin) < 0:
            raise ValueError("prune_margin must be >= 0")
        if float(earth_radius_m) <= 0:
            raise ValueError("earth_radius_m must be > 0")

        self._cell_size_m = float(cell_size_m)
        self._earth_radius_m = float(earth_radius_m)
        self._prune_margin = float(prune_margin)
        self._distance_model = str(distance_model).strip().lower()
        self._distance: DistanceFn = make_distance_fn(self._distance_model, earth_radius_m=self._earth_radius_m)

        self._cell_deg = self._cell_size_m / meters_per_degree(self._earth_radius_m)
        self._n_lat = max(1, int(math.ceil(180.0 / self._cell_deg)))
        self._n_lon = max(1, int(math.ceil(360.0 / self._cell_deg)))

        self._cells: dict[CellKey, dict[str, IndexedEntry[T]]] = {}
        self._entries: dict[str, IndexedEntry[T]] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def from_items(
        cls,
        items: Iterable[T],
        *,
        get_latlon: Callable[[T], tuple[float, float]],
        get_id: Callable[[T], str] | None = None,
        **kwargs: float | str,
    ) -> "ProximityIndex[T]":
        """Build an index from arbitrary items; invalid coordinates raise `InvalidCoordinate`."""
        index: ProximityIndex[T] = cls(**kwargs)  # type: ignore[arg-type]
        for it in items:
            index.insert(as_point(get_latlon(it)), it, entry_id=get_id(it) if get_id else None)
        return index

    @property
    def cell_size_m(self) -> float:
        return self._cell_size_m

    @property
    def distance_model(self) -> str:
        return self._distance_model

    def distance_m(self, a: GeoPoint, b: GeoPoint) -> float:
        """Distance between two points using this index's distance model."""
        return self._distance(a, b)

    def _lat_idx(self, lat: float) -> int:
        return min(int(math.floor((lat + 90.0) / self._cell_deg)), self._n_lat - 1)

    def _lon_idx(self, lon: float) -> int:
        return min(int(math.floor((lon + 180.0) / self._cell_deg)), self._n_lon - 1)

    def _cell_key(self, point: GeoPoint) -> CellKey:
        return (self._lat_idx(point.lat), self._lon_idx(point.lon))

    def _candidate_cells(self, box: BoundingBox) -> Iterator[dict[str, IndexedEntry[T]]]:
        i0, i1 = self._lat_idx(box.lat_min), self._lat_idx(box.lat_max)
        lon_spans = [(self._lon_idx(lo), self._lon_idx(hi)) for lo, hi in box.lon_ranges]
        wanted = (i1 - i0 + 1) * sum(j1 - j0 + 1 for j0, j1 in lon_spans)

        # Large circles cover more cells than are occupied: walk the occupied ones instead.
        if wanted > len(self._cells):
            for (i, j), cell in self._cells.items():
                if i0 <= i <= i1 and any(j0 <= j <= j1 for j0, j1 in lon_spans):
                    yield cell
            return

        for i in range(i0, i1 + 1):
            for j0, j1 in lon_spans:
                for j in range(j0, j1 + 1):
                    cell = self._cells.get((i, j))
                    if cell:
                        yield cell

    def insert(self, point: GeoPoint, payload: T, *, entry_id: str | None = None) -> IndexedEntry[T]:
        """Add an entry; an existing `entry_id` is replaced (and moved if the point changed)."""
        point = as_point(point)
        eid = str(entry_id) if entry_id is not None else uuid.uuid4().hex
        entry = IndexedEntry(id=eid, point=point, payload=payload)
        key = self._cell_key(point)
        with self._lock.write():
            previous = self._entries.get(eid)
            if previous is not None:
                self._detach(previous)
            self._entries[eid] = entry
            self._cells.setdefault(key, {})[eid] = entry
        return entry

    def _detach(self, entry: IndexedEntry[T]) -> None:
        key = self._cell_key(entry.point)
        cell = self._cells.get(key)
        if cell is None:
            return
        cell.pop(entry.id, None)
        if not cell:
            del self._cells[key]

    def remove(self, entry_id: str) -> IndexedEntry[T]:
        """Delete and return the entry; raises `NotFound` when absent."""
        with self._lock.write():
            entry = self._entries.pop(str(entry_id), None)
            if entry is None:
                raise NotFound(str(entry_id))
            self._detach(entry)
        return entry

    def clear(self) -> None:
        with self._lock.write():
            self._entries.clear()
            self._cells.clear()

    def get(self, entry_id: str) -> IndexedEntry[T]:
        with self._lock.read():
            entry = self._entries.get(str(entry_id))
        if entry is None:
            raise NotFound(str(entry_id))
        return entry

    def search(self, center: GeoPoint, radius_m: float) -> list[Neighbor[T]]:
        """Entries within `radius_m` of `center`, nearest first (ties broken by id)."""
        origin = as_point(center)
        r = validate_radius(radius_m)
        box = bounding_box(origin, r * (1.0 + self._prune_margin), earth_radius_m=self._earth_radius_m)

        out: list[Neighbor[T]] = []
        with self._lock.read():
            for cell in self._candidate_cells(box):
                for e in cell.values():
                    # Cheap rectangle filter before the exact distance.
                    if not _in_box(e.point, box):
                        continue
                    d = self._distance(origin, e.point)
                    if d <= r:
                        out.append(Neighbor(entry=e, distance_m=d))
        out.sort(key=lambda n: (n.distance_m, n.entry.id))
        return out

    def query(self, center: GeoPoint, radius_m: float) -> list[IndexedEntry[T]]:
        """Entries whose distance to `center` is <= `radius_m`."""
        return [n.entry for n in self.search(center, radius_m)]

    def nearest(self, center: GeoPoint, *, k: int = 1, max_radius_m: float | None = None) -> list[Neighbor[T]]:
        """Up to `k` closest entries, optionally bounded by `max_radius_m`."""
        if int(k) < 1:
            raise InvalidQuery(f"k must be >= 1, got {k!r}")
        radius = math.pi * self._earth_radius_m if max_radius_m is None else max_radius_m
        return self.search(center, radius)[: int(k)]

    def stats(self) -> IndexStats:
        with self._lock.read():
            sizes = [len(c) for c in self._cells.values()]
            entries = len(self._entries)
        return IndexStats(
            entries=entries,
            occupied_cells=len(sizes),
            max_entries_per_cell=max(sizes) if sizes else 0,
            mean_entries_per_cell=(sum(sizes) / len(sizes)) if sizes else 0.0,
            cell_size_m=self._cell_size_m,
            distance_model=self._distance_model,
        )

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock.read():
            return str(entry_id) in self._entries

    def __iter__(self) -> Iterator[IndexedEntry[T]]:
        with self._lock.read():
            snapshot = list(self._entries.values())
        return iter(snapshot)

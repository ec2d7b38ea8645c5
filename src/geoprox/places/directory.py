from __future__ import annotations

# This module is the "orchestrator" for place lookups.
# It wires together:
# - a durable store (memory / SQLite / Elasticsearch) that survives restarts,
# - the in-memory ProximityIndex that answers radius queries,
# - the API/CLI models (Place, NearbyResult).
#
# The index is rebuilt from the store on startup by replaying every stored entry, and the
# two are kept in step on every add/remove.

import logging
from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo

from geoprox.catalog.loader import load_places
from geoprox.config.settings import QuerySettings, Settings, get_settings
from geoprox.core.env import resolve_project_path
from geoprox.core.errors import InvalidQuery, NotFound
from geoprox.core.geo import GeoPoint, as_point, make_distance_fn
from geoprox.core.spatial_index import IndexedEntry, Neighbor, ProximityIndex, validate_radius
from geoprox.domain.models import GeoPoint as ApiGeoPoint
from geoprox.domain.models import NearbyResult, Place, PlaceMatch
from geoprox.storage.base import PointStore
from geoprox.storage.elasticsearch import ElasticsearchStore
from geoprox.storage.memory import MemoryStore
from geoprox.storage.sqlite import SqliteStore

logger = logging.getLogger(__name__)


def build_index(settings: Settings) -> ProximityIndex[Place]:
    cfg = settings.index
    return ProximityIndex(
        cell_size_m=cfg.cell_size_m,
        distance_model=cfg.distance_model,
        prune_margin=cfg.prune_margin,
        earth_radius_m=cfg.earth_radius_m,
    )


def build_store(settings: Settings, *, index: ProximityIndex[Place] | None = None) -> PointStore:
    """Pick the storage adapter named by `settings.storage.backend`.

    The memory backend keeps its entries in `index` when given, so a directory built on
    it indexes every place once.
    """
    storage = settings.storage
    distance_fn = make_distance_fn(settings.index.distance_model, earth_radius_m=settings.index.earth_radius_m)

    if storage.backend == "sqlite":
        return SqliteStore(
            resolve_project_path(storage.sqlite.path),
            table=storage.sqlite.table,
            distance_fn=distance_fn,
            prune_margin=settings.index.prune_margin,
            earth_radius_m=settings.index.earth_radius_m,
        )
    if storage.backend == "elasticsearch":
        store = ElasticsearchStore(
            storage.elasticsearch,
            distance_fn=distance_fn,
            prune_margin=settings.index.prune_margin,
            timeout_seconds=settings.app.http_timeout_seconds,
        )
        store.ensure_index()
        return store
    return MemoryStore(index if index is not None else build_index(settings))


def _passes_tag_filters(place: Place, *, required: set[str], excluded: set[str]) -> bool:
    tags = set(place.tags)
    if required and not required.issubset(tags):
        return False
    if excluded and tags & excluded:
        return False
    return True


def _normalize_tags(tags: Iterable[str]) -> set[str]:
    return {t.strip().lower() for t in tags if t and t.strip()}


class PlaceDirectory:
    """Places kept in a durable store and served from an in-memory proximity index."""

    def __init__(
        self,
        store: PointStore,
        index: ProximityIndex[Place],
        *,
        query_settings: QuerySettings | None = None,
        timezone: str = "UTC",
    ):
        self._store = store
        self._index = index
        self._query = query_settings or QuerySettings()
        self._tz = ZoneInfo(timezone)
        # A MemoryStore over this same index: store writes already update the index.
        self._shared_index = getattr(store, "index", None) is index

    @property
    def store(self) -> PointStore:
        return self._store

    @property
    def index(self) -> ProximityIndex[Place]:
        return self._index

    def __len__(self) -> int:
        return len(self._index)

    def rebuild(self) -> int:
        """Replace the index contents with every entry in the store; returns the count."""
        if self._shared_index:
            return len(self._index)
        self._index.clear()
        count = 0
        for entry in self._store.iter_entries():
            self._index.insert(entry.point, entry.payload, entry_id=entry.id)
            count += 1
        logger.info("Rebuilt proximity index from %s store: %d entries", self._store.name, count)
        return count

    def add_place(self, place: Place) -> Place:
        """Persist `place`, then index it (same id replaces the previous place)."""
        entry = IndexedEntry(id=place.id, point=as_point(place.location), payload=place)
        self._store.insert(entry)
        if not self._shared_index:
            self._index.insert(entry.point, place, entry_id=place.id)
        return place

    def add_places(self, places: Iterable[Place]) -> int:
        count = 0
        for place in places:
            self.add_place(place)
            count += 1
        return count

    def get_place(self, place_id: str) -> Place:
        return self._index.get(place_id).payload

    def remove_place(self, place_id: str) -> Place:
        """Remove a place from the index and the store; raises `NotFound` when unknown."""
        entry = self._index.get(place_id)
        try:
            self._store.remove(place_id)
        except NotFound:
            logger.warning("Place %s was indexed but missing from the %s store", place_id, self._store.name)
        if not self._shared_index:
            self._index.remove(place_id)
        return entry.payload

    def _effective_limit(self, limit: int | None) -> int:
        if limit is None:
            return int(self._query.default_limit)
        if int(limit) < 1:
            raise InvalidQuery(f"limit must be >= 1, got {limit!r}")
        return min(int(limit), int(self._query.max_limit))

    def _check_radius(self, radius_m: float) -> float:
        r = validate_radius(radius_m)
        if r > self._query.max_radius_m:
            raise InvalidQuery(f"radius_m must be <= {self._query.max_radius_m:g}, got {r:g}")
        return r

    def nearby(
        self,
        center: GeoPoint,
        radius_m: float,
        *,
        limit: int | None = None,
        required_tags: Iterable[str] = (),
        excluded_tags: Iterable[str] = (),
    ) -> NearbyResult:
        """Places within `radius_m` of `center`, nearest first, after tag filters."""
        origin = as_point(center)
        r = self._check_radius(radius_m)
        max_results = self._effective_limit(limit)
        required = _normalize_tags(required_tags)
        excluded = _normalize_tags(excluded_tags)

        hits: list[Neighbor[Place]] = self._index.search(origin, r)
        matched = [
            n for n in hits if _passes_tag_filters(n.entry.payload, required=required, excluded=excluded)
        ]
        results = [PlaceMatch(place=n.entry.payload, distance_m=n.distance_m) for n in matched[:max_results]]

        return NearbyResult(
            generated_at=datetime.now(self._tz),
            center=ApiGeoPoint(lat=origin.lat, lon=origin.lon),
            radius_m=r,
            results=results,
            meta={
                "candidates": len(hits),
                "matched": len(matched),
                "truncated": len(matched) > max_results,
                "distance_model": self._index.distance_model,
                "storage": self._store.name,
            },
        )

    def nearest(self, center: GeoPoint, *, k: int = 1, max_radius_m: float | None = None) -> list[PlaceMatch]:
        radius = self._query.max_radius_m if max_radius_m is None else self._check_radius(max_radius_m)
        hits = self._index.nearest(center, k=min(int(k), int(self._query.max_limit)), max_radius_m=radius)
        return [PlaceMatch(place=n.entry.payload, distance_m=n.distance_m) for n in hits]

    def stats(self) -> dict[str, object]:
        return {"storage": self._store.name, "index": self._index.stats().as_dict()}


def build_directory(settings: Settings | None = None) -> PlaceDirectory:
    """Build store + index from settings and replay the store into the index."""
    settings = settings or get_settings()
    index = build_index(settings)
    directory = PlaceDirectory(
        build_store(settings, index=index),
        index,
        query_settings=settings.query,
        timezone=settings.app.timezone,
    )
    directory.rebuild()
    if settings.catalog.seed_on_empty and len(directory) == 0:
        seeded = directory.add_places(load_places(settings.catalog.path))
        logger.info("Seeded empty directory from %s: %d places", settings.catalog.path, seeded)
    return directory

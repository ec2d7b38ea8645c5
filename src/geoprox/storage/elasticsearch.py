"""
Elasticsearch store.

Documents live in one index with a `geo_point` mapping:
    {"id": "...", "point": {"lat": ..., "lon": ...}, "payload": {...}}

Radius queries use a `geo_distance` filter sorted by `_geo_distance`, paged with
`search_after`. Distances are recomputed locally with the configured distance model so
every backend agrees on what "within R meters" means.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator
from urllib.parse import quote

import httpx

from geoprox.config.settings import ElasticsearchSettings
from geoprox.core.errors import NotFound, StorageError
from geoprox.core.geo import DistanceFn, GeoPoint, as_point, haversine_m
from geoprox.core.http import request_json
from geoprox.core.spatial_index import IndexedEntry, Neighbor, validate_radius
from geoprox.domain.models import Place
from geoprox.storage.base import entry_from_document, entry_to_document

logger = logging.getLogger(__name__)

MIN_QUERY_DISTANCE_M = 0.01

INDEX_MAPPING: dict[str, Any] = {
    "mappings": {
        "properties": {
            "id": {"type": "keyword"},
            "point": {"type": "geo_point"},
            "payload": {"type": "object", "enabled": False},
        }
    }
}


def _status_code(exc: httpx.HTTPError) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


class ElasticsearchStore:
    name = "elasticsearch"

    def __init__(
        self,
        settings: ElasticsearchSettings,
        *,
        distance_fn: DistanceFn = haversine_m,
        prune_margin: float = 0.01,
        timeout_seconds: float = 15,
    ):
        self._settings = settings
        self._base_url = settings.base_url.rstrip("/")
        self._index = settings.index_name
        self._distance = distance_fn
        self._prune_margin = float(prune_margin)
        self._timeout_seconds = float(timeout_seconds)
        self._auth = (
            (settings.username, settings.password or "") if settings.username else None
        )

    def _url(self, *parts: str) -> str:
        return "/".join([self._base_url, quote(self._index, safe=""), *parts])

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            return request_json(
                method,
                url,
                auth=self._auth,
                timeout_seconds=self._timeout_seconds,
                **kwargs,
            )
        except httpx.HTTPError as e:
            if _status_code(e) == 404:
                raise
            raise StorageError(f"Elasticsearch {method} {url} failed: {e}") from e

    def ensure_index(self) -> None:
        """Create the index with its `geo_point` mapping unless it already exists."""
        try:
            self._request("PUT", self._url(), json=INDEX_MAPPING)
            logger.info("Created Elasticsearch index %s", self._index)
        except StorageError as e:
            cause = e.__cause__
            if (
                isinstance(cause, httpx.HTTPStatusError)
                and cause.response.status_code == 400
                and "resource_already_exists_exception" in cause.response.text
            ):
                return
            raise

    def insert(self, entry: IndexedEntry[Place]) -> None:
        self._request(
            "PUT",
            self._url("_doc", quote(entry.id, safe="")),
            json=entry_to_document(entry),
            params={"refresh": self._settings.refresh},
        )

    def remove(self, entry_id: str) -> None:
        try:
            self._request(
                "DELETE",
                self._url("_doc", quote(str(entry_id), safe="")),
                params={"refresh": self._settings.refresh},
            )
        except httpx.HTTPStatusError as e:
            raise NotFound(str(entry_id)) from e

    def _search_pages(self, body: dict[str, Any]) -> Iterator[dict[str, Any]]:
        """Yield raw hits for `body`, following `search_after` until exhausted."""
        size = int(self._settings.scan_page_size)
        search_after: list[Any] | None = None
        while True:
            page = dict(body, size=size)
            if search_after is not None:
                page["search_after"] = search_after
            try:
                data = self._request("POST", self._url("_search"), json=page)
            except httpx.HTTPStatusError:
                # Index does not exist yet: nothing stored.
                return
            hits = ((data or {}).get("hits") or {}).get("hits") or []
            yield from hits
            if len(hits) < size:
                return
            search_after = hits[-1].get("sort")
            if not search_after:
                return

    def query(self, center: GeoPoint, radius_m: float) -> list[Neighbor[Place]]:
        origin = as_point(center)
        r = validate_radius(radius_m)
        anchor = {"lat": origin.lat, "lon": origin.lon}
        # geo_distance rejects a zero distance; the exact filter below still enforces r.
        prune = f"{max(r * (1.0 + self._prune_margin), MIN_QUERY_DISTANCE_M)}m"
        body = {
            "query": {"bool": {"filter": {"geo_distance": {"distance": prune, "point": anchor}}}},
            "sort": [
                {"_geo_distance": {"point": anchor, "order": "asc", "unit": "m", "distance_type": "arc"}},
                {"id": "asc"},
            ],
        }
        out: list[Neighbor[Place]] = []
        for hit in self._search_pages(body):
            entry = entry_from_document(hit.get("_source") or {})
            d = self._distance(origin, entry.point)
            if d <= r:
                out.append(Neighbor(entry=entry, distance_m=d))
        out.sort(key=lambda n: (n.distance_m, n.entry.id))
        return out

    def iter_entries(self) -> Iterator[IndexedEntry[Place]]:
        body = {"query": {"match_all": {}}, "sort": [{"id": "asc"}]}
        for hit in self._search_pages(body):
            yield entry_from_document(hit.get("_source") or {})

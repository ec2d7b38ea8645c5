"""
SQLite store.

One table holds `id`, `lat`, `lon` and the JSON payload. A radius query prunes with the
spherical bounding box in SQL (served by the `(lat, lon)` index) and then applies the
exact distance in Python, so results match the in-memory index.

Every operation opens its own connection and closes it on every exit path; nothing
holds a module-level connection.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from geoprox.core.errors import NotFound, StorageError
from geoprox.core.geo import EARTH_MEAN_RADIUS_M, DistanceFn, GeoPoint, as_point, bounding_box, haversine_m
from geoprox.core.spatial_index import IndexedEntry, Neighbor, validate_radius
from geoprox.domain.models import Place
from geoprox.storage.base import entry_from_document, entry_to_document

logger = logging.getLogger(__name__)


class SqliteStore:
    name = "sqlite"

    def __init__(
        self,
        path: str | Path,
        *,
        table: str = "places",
        distance_fn: DistanceFn = haversine_m,
        prune_margin: float = 0.01,
        earth_radius_m: float = EARTH_MEAN_RADIUS_M,
        page_size: int = 1000,
    ):
        if not table.isidentifier():
            raise ValueError(f"Invalid table name '{table}'")
        self._path = Path(path)
        self._table = table
        self._distance = distance_fn
        self._prune_margin = float(prune_margin)
        self._earth_radius_m = float(earth_radius_m)
        self._page_size = int(page_size)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection; commit on success, always close."""
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open SQLite database {self._path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}") from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                "id TEXT PRIMARY KEY, "
                "lat REAL NOT NULL, "
                "lon REAL NOT NULL, "
                "payload TEXT NOT NULL)"
            )
            conn.execute(f"CREATE INDEX IF NOT EXISTS {self._table}_lat_lon ON {self._table} (lat, lon)")

    def insert(self, entry: IndexedEntry[Place]) -> None:
        doc = entry_to_document(entry)
        with self._conn() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {self._table} (id, lat, lon, payload) VALUES (?, ?, ?, ?)",
                (entry.id, entry.point.lat, entry.point.lon, json.dumps(doc["payload"], ensure_ascii=False)),
            )

    def remove(self, entry_id: str) -> None:
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (str(entry_id),))
            if cur.rowcount == 0:
                raise NotFound(str(entry_id))

    def count(self) -> int:
        with self._conn() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS n FROM {self._table}").fetchone()
        return int(row["n"])

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> IndexedEntry[Place]:
        try:
            payload = json.loads(row["payload"])
        except ValueError as e:
            raise StorageError(f"Malformed payload for id '{row['id']}': {e}") from e
        return entry_from_document(
            {"id": row["id"], "point": {"lat": row["lat"], "lon": row["lon"]}, "payload": payload}
        )

    def query(self, center: GeoPoint, radius_m: float) -> list[Neighbor[Place]]:
        origin = as_point(center)
        r = validate_radius(radius_m)
        box = bounding_box(origin, r * (1.0 + self._prune_margin), earth_radius_m=self._earth_radius_m)

        lon_clause = " OR ".join("(lon BETWEEN ? AND ?)" for _ in box.lon_ranges)
        params: list[float] = [box.lat_min, box.lat_max]
        for lo, hi in box.lon_ranges:
            params.extend((lo, hi))
        sql = f"SELECT id, lat, lon, payload FROM {self._table} WHERE lat BETWEEN ? AND ? AND ({lon_clause})"

        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()

        out: list[Neighbor[Place]] = []
        for row in rows:
            entry = self._row_to_entry(row)
            d = self._distance(origin, entry.point)
            if d <= r:
                out.append(Neighbor(entry=entry, distance_m=d))
        out.sort(key=lambda n: (n.distance_m, n.entry.id))
        logger.debug("SQLite query r=%.1f: %d candidates, %d hits", r, len(rows), len(out))
        return out

    def iter_entries(self) -> Iterator[IndexedEntry[Place]]:
        # Keyset pagination: one short-lived connection per page.
        last_id = ""
        while True:
            with self._conn() as conn:
                rows = conn.execute(
                    f"SELECT id, lat, lon, payload FROM {self._table} WHERE id > ? ORDER BY id LIMIT ?",
                    (last_id, self._page_size),
                ).fetchall()
            if not rows:
                return
            for row in rows:
                yield self._row_to_entry(row)
            last_id = rows[-1]["id"]

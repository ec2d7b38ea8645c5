"""
Storage capability interface.

The directory never branches on the backend type: every adapter (memory, SQLite,
Elasticsearch) exposes the same four operations and owns its own vendor syntax.
"""

from __future__ import annotations

from typing import Any, Iterator, Protocol

from geoprox.core.errors import StorageError
from geoprox.core.geo import GeoPoint
from geoprox.core.spatial_index import IndexedEntry, Neighbor
from geoprox.domain.models import Place


class PointStore(Protocol):
    """Durable home for directory entries."""

    name: str

    def insert(self, entry: IndexedEntry[Place]) -> None:
        """Store `entry`, replacing any entry with the same id."""
        ...

    def remove(self, entry_id: str) -> None:
        """Delete an entry; raises `NotFound` when absent."""
        ...

    def query(self, center: GeoPoint, radius_m: float) -> list[Neighbor[Place]]:
        """Entries within `radius_m` of `center`, nearest first."""
        ...

    def iter_entries(self) -> Iterator[IndexedEntry[Place]]:
        """Every stored entry (used to rebuild the in-memory index on startup)."""
        ...


def entry_to_document(entry: IndexedEntry[Place]) -> dict[str, Any]:
    """Serialize an entry into the JSON shape shared by the persistent adapters."""
    return {
        "id": entry.id,
        "point": {"lat": entry.point.lat, "lon": entry.point.lon},
        "payload": entry.payload.model_dump(mode="json"),
    }


def entry_from_document(doc: dict[str, Any]) -> IndexedEntry[Place]:
    """Inverse of `entry_to_document`; malformed rows raise `StorageError`."""
    try:
        point = doc["point"]
        return IndexedEntry(
            id=str(doc["id"]),
            point=GeoPoint(lat=point["lat"], lon=point["lon"]),
            payload=Place.model_validate(doc["payload"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise StorageError(f"Malformed stored entry: {e}") from e

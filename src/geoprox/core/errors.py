"""
Error taxonomy.

Every error raised by the index, the storage adapters and the directory derives from
`GeoProxError`. Input errors also subclass `ValueError` so callers (and the API layer)
can treat them like any other validation failure.
"""

from __future__ import annotations


class GeoProxError(Exception):
    """Base class for all geoprox errors."""


class InvalidCoordinate(GeoProxError, ValueError):
    """Latitude/longitude is missing, non-finite or out of range."""


class InvalidQuery(GeoProxError, ValueError):
    """Query parameters (radius, k) are not usable."""


class NotFound(GeoProxError, LookupError):
    """No entry exists for the given identifier."""

    def __init__(self, entry_id: str):
        super().__init__(f"No entry with id '{entry_id}'")
        self.entry_id = entry_id


class StorageError(GeoProxError):
    """A storage backend failed (transport error, unexpected response)."""

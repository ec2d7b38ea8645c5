"""
Place catalog loader.

The catalog is a local JSON file (default: `data/catalogs/places.json`) that contains
places with coordinates and tags. We validate it into typed Pydantic models so the
directory can assume a consistent shape before inserting anything.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import TypeAdapter

from geoprox.core.env import resolve_project_path
from geoprox.domain.models import Place


_PLACES_ADAPTER = TypeAdapter(list[Place])


def load_places(path: str | Path) -> list[Place]:
    """Load and validate a place catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return _PLACES_ADAPTER.validate_python(payload)

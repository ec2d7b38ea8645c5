"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- catalog/API inputs (`Place`)
- query output (`NearbyResult`)

The index itself stores `Place` objects as opaque payloads; only the API, CLI and
storage adapters care about their shape.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    lat: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(..., ge=-180, le=180, allow_inf_nan=False)


class Place(BaseModel):
    """A named point of interest stored in the directory."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, min_length=1)
    name: str
    location: GeoPoint
    tags: list[str] = Field(default_factory=list)

    description: str | None = None
    address: str | None = None
    url: str | None = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, tags: list[str]) -> list[str]:
        return sorted({t.strip().lower() for t in tags if t and t.strip()})


class PlaceMatch(BaseModel):
    """One query hit: the place and its distance from the query center."""

    place: Place
    distance_m: float = Field(..., ge=0)


class NearbyResult(BaseModel):
    """Places within a radius, nearest first, plus the original query."""

    generated_at: datetime
    center: GeoPoint
    radius_m: float = Field(..., ge=0)
    results: list[PlaceMatch]
    meta: dict[str, Any] = Field(default_factory=dict)

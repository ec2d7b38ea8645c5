"""
API routes.

Endpoints:
- GET    `/api/health`: liveness + entry count.
- GET    `/api/stats`: index/storage statistics.
- POST   `/api/places`: add (or replace) a place.
- GET    `/api/places/{place_id}`: fetch one place.
- DELETE `/api/places/{place_id}`: remove a place.
- GET    `/api/nearby`: places within a radius of a point, nearest first.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import NoReturn

from fastapi import APIRouter, HTTPException, Query

from geoprox.config.settings import get_settings
from geoprox.core.errors import GeoProxError, InvalidCoordinate, InvalidQuery, NotFound
from geoprox.core.geo import GeoPoint as CoreGeoPoint
from geoprox.domain.models import NearbyResult, Place
from geoprox.places.directory import PlaceDirectory, build_directory

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache
def _directory() -> PlaceDirectory:
    # Built once per process; the index is replayed from the configured store here.
    return build_directory(get_settings())


def _raise_http(e: Exception) -> NoReturn:
    if isinstance(e, NotFound):
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": str(e)}) from e
    if isinstance(e, (InvalidCoordinate, InvalidQuery)):
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(e)}) from e
    raise HTTPException(status_code=500, detail={"code": "INTERNAL_ERROR", "message": str(e)}) from e


@router.get("/api/health")
def get_health() -> dict:
    directory = _directory()
    return {"status": "ok", "entries": len(directory), "storage": directory.store.name}


@router.get("/api/stats")
def get_stats() -> dict:
    """Return index occupancy and storage backend details."""
    return _directory().stats()


@router.post("/api/places", response_model=Place, status_code=201)
def post_place(place: Place) -> Place:
    """Add a place (an existing id is replaced)."""
    try:
        return _directory().add_place(place)
    except GeoProxError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception("Unhandled error in post_place")
        _raise_http(e)


@router.get("/api/places/{place_id}", response_model=Place)
def get_place(place_id: str) -> Place:
    try:
        return _directory().get_place(place_id)
    except GeoProxError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception("Unhandled error in get_place")
        _raise_http(e)


@router.delete("/api/places/{place_id}", response_model=Place)
def delete_place(place_id: str) -> Place:
    """Remove a place and return what was removed."""
    try:
        return _directory().remove_place(place_id)
    except GeoProxError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception("Unhandled error in delete_place")
        _raise_http(e)


@router.get("/api/nearby", response_model=NearbyResult)
def get_nearby(
    lat: float,
    lon: float,
    radius_m: float | None = None,
    limit: int | None = None,
    tag: list[str] | None = Query(default=None),
    exclude_tag: list[str] | None = Query(default=None),
) -> NearbyResult:
    """Places within `radius_m` meters of (`lat`, `lon`), nearest first."""
    settings = get_settings()
    try:
        center = CoreGeoPoint(lat=lat, lon=lon)
        return _directory().nearby(
            center,
            radius_m if radius_m is not None else settings.query.default_radius_m,
            limit=limit,
            required_tags=tag or [],
            excluded_tags=exclude_tag or [],
        )
    except GeoProxError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception("Unhandled error in get_nearby")
        _raise_http(e)

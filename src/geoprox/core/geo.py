from __future__ import annotations

import math
from dataclasses import dataclass
from functools import partial
from math import asin, atan2, cos, degrees, radians, sin, sqrt, tan
from typing import Callable, Literal

from geoprox.core.errors import InvalidCoordinate

"""
Geospatial helpers.

We keep a tiny geometry layer here so the index and the storage adapters can do
distance calculations without pulling in heavier GIS dependencies.

Accuracy notes:
- `haversine_m` assumes a sphere of mean radius 6,371,008.8 m. Against the WGS-84
  ellipsoid the error stays below ~0.6%, which is fine for "what is near me" queries.
- `vincenty_m` solves the inverse problem on the WGS-84 ellipsoid (sub-millimeter),
  at the cost of an iterative loop.
"""

EARTH_MEAN_RADIUS_M = 6_371_008.8

# WGS-84 ellipsoid.
WGS84_A = 6_378_137.0
WGS84_F = 1 / 298.257223563
WGS84_B = WGS84_A * (1 - WGS84_F)

DistanceModel = Literal["haversine", "vincenty"]
DistanceFn = Callable[["GeoPoint", "GeoPoint"], float]


def _coerce_coordinate(name: str, value: object, limit: float) -> float:
    if isinstance(value, bool):
        raise InvalidCoordinate(f"{name} must be a number, got {value!r}")
    try:
        v = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidCoordinate(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(v):
        raise InvalidCoordinate(f"{name} must be finite, got {value!r}")
    if v < -limit or v > limit:
        raise InvalidCoordinate(f"{name} must be within [-{limit:g}, {limit:g}], got {v}")
    return v


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees (validated on construction)."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "lat", _coerce_coordinate("lat", self.lat, 90.0))
        object.__setattr__(self, "lon", _coerce_coordinate("lon", self.lon, 180.0))


def meters_per_degree(radius_m: float = EARTH_MEAN_RADIUS_M) -> float:
    """Length of one degree of arc on a sphere of `radius_m`."""
    return math.pi * radius_m / 180.0


def haversine_m(a: GeoPoint, b: GeoPoint, *, radius_m: float = EARTH_MEAN_RADIUS_M) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lon1 = radians(a.lon)
    lat2 = radians(b.lat)
    lon2 = radians(b.lon)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * radius_m * asin(min(1.0, sqrt(h)))


def vincenty_m(a: GeoPoint, b: GeoPoint, *, max_iterations: int = 200, tolerance: float = 1e-12) -> float:
    """Ellipsoidal (WGS-84) distance in meters using Vincenty's inverse formula.

    Falls back to `haversine_m` when the iteration does not converge, which only
    happens for nearly antipodal points.
    """
    if a.lat == b.lat and a.lon == b.lon:
        return 0.0

    f = WGS84_F
    u1 = math.atan((1 - f) * tan(radians(a.lat)))
    u2 = math.atan((1 - f) * tan(radians(b.lat)))
    big_l = radians(b.lon - a.lon)
    sin_u1, cos_u1 = sin(u1), cos(u1)
    sin_u2, cos_u2 = sin(u2), cos(u2)

    lam = big_l
    for _ in range(max_iterations):
        sin_lam, cos_lam = sin(lam), cos(lam)
        sin_sigma = sqrt(
            (cos_u2 * sin_lam) ** 2 + (cos_u1 * sin_u2 - sin_u1 * cos_u2 * cos_lam) ** 2
        )
        if sin_sigma == 0:
            return 0.0
        cos_sigma = sin_u1 * sin_u2 + cos_u1 * cos_u2 * cos_lam
        sigma = atan2(sin_sigma, cos_sigma)
        sin_alpha = cos_u1 * cos_u2 * sin_lam / sin_sigma
        cos2_alpha = 1 - sin_alpha**2
        # Equatorial line: cos2_alpha == 0.
        cos_2sigma_m = cos_sigma - 2 * sin_u1 * sin_u2 / cos2_alpha if cos2_alpha != 0 else 0.0
        c = f / 16 * cos2_alpha * (4 + f * (4 - 3 * cos2_alpha))
        lam_prev = lam
        lam = big_l + (1 - c) * f * sin_alpha * (
            sigma + c * sin_sigma * (cos_2sigma_m + c * cos_sigma * (-1 + 2 * cos_2sigma_m**2))
        )
        if abs(lam - lam_prev) < tolerance:
            break
    else:
        return haversine_m(a, b)

    u_sq = cos2_alpha * (WGS84_A**2 - WGS84_B**2) / WGS84_B**2
    big_a = 1 + u_sq / 16384 * (4096 + u_sq * (-768 + u_sq * (320 - 175 * u_sq)))
    big_b = u_sq / 1024 * (256 + u_sq * (-128 + u_sq * (74 - 47 * u_sq)))
    delta_sigma = (
        big_b
        * sin_sigma
        * (
            cos_2sigma_m
            + big_b
            / 4
            * (
                cos_sigma * (-1 + 2 * cos_2sigma_m**2)
                - big_b / 6 * cos_2sigma_m * (-3 + 4 * sin_sigma**2) * (-3 + 4 * cos_2sigma_m**2)
            )
        )
    )
    return WGS84_B * big_a * (sigma - delta_sigma)


_DISTANCE_FNS: dict[str, DistanceFn] = {
    "haversine": haversine_m,
    "vincenty": vincenty_m,
}


def get_distance_fn(name: str) -> DistanceFn:
    """Return the distance function registered under `name`."""
    key = str(name).strip().lower()
    try:
        return _DISTANCE_FNS[key]
    except KeyError:
        raise ValueError(
            f"Unknown distance model '{name}', expected one of: {', '.join(sorted(_DISTANCE_FNS))}"
        ) from None


@dataclass(frozen=True)
class BoundingBox:
    """A lat/lon rectangle enclosing a query circle.

    `lon_ranges` holds one range normally and two when the circle crosses the
    antimeridian. A circle that contains a pole spans every longitude.
    """

    lat_min: float
    lat_max: float
    lon_ranges: tuple[tuple[float, float], ...]


def bounding_box(center: GeoPoint, radius_m: float, *, earth_radius_m: float = EARTH_MEAN_RADIUS_M) -> BoundingBox:
    """Spherical bounding box of the circle of `radius_m` around `center`."""
    delta = float(radius_m) / float(earth_radius_m)
    if delta >= math.pi:
        return BoundingBox(lat_min=-90.0, lat_max=90.0, lon_ranges=((-180.0, 180.0),))

    lat_min = center.lat - degrees(delta)
    lat_max = center.lat + degrees(delta)
    if lat_max >= 90.0 or lat_min <= -90.0:
        return BoundingBox(
            lat_min=max(-90.0, lat_min),
            lat_max=min(90.0, lat_max),
            lon_ranges=((-180.0, 180.0),),
        )

    ratio = min(1.0, sin(delta) / cos(radians(center.lat)))
    dlon = degrees(asin(ratio))
    lon_min = center.lon - dlon
    lon_max = center.lon + dlon
    if lon_max - lon_min >= 360.0:
        ranges: tuple[tuple[float, float], ...] = ((-180.0, 180.0),)
    elif lon_min < -180.0:
        ranges = ((lon_min + 360.0, 180.0), (-180.0, lon_max))
    elif lon_max > 180.0:
        ranges = ((lon_min, 180.0), (-180.0, lon_max - 360.0))
    else:
        ranges = ((lon_min, lon_max),)
    return BoundingBox(lat_min=lat_min, lat_max=lat_max, lon_ranges=ranges)


def as_point(value: object) -> GeoPoint:
    """Coerce `value` into a `GeoPoint`.

    Accepts a `GeoPoint`, a `(lat, lon)` pair, a mapping with `lat`/`lon` keys, or any
    object exposing `lat`/`lon` attributes (e.g. the pydantic API model).
    """
    if isinstance(value, GeoPoint):
        return value
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise InvalidCoordinate(f"Expected a (lat, lon) pair, got {value!r}")
        return GeoPoint(lat=value[0], lon=value[1])
    if isinstance(value, dict):
        if "lat" not in value or "lon" not in value:
            raise InvalidCoordinate(f"Expected 'lat' and 'lon' keys, got {sorted(value)}")
        return GeoPoint(lat=value["lat"], lon=value["lon"])
    lat = getattr(value, "lat", None)
    lon = getattr(value, "lon", None)
    if lat is None or lon is None:
        raise InvalidCoordinate(f"Cannot read a point from {type(value).__name__}")
    return GeoPoint(lat=lat, lon=lon)


def make_distance_fn(model: str, *, earth_radius_m: float = EARTH_MEAN_RADIUS_M) -> DistanceFn:
    """Distance function for `model`; haversine is bound to `earth_radius_m`."""
    fn = get_distance_fn(model)
    if fn is haversine_m:
        return partial(haversine_m, radius_m=float(earth_radius_m))
    return fn

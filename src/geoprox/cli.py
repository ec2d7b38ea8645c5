"""
GeoProx CLI entrypoint.

This CLI is intended for loading catalogs into the configured store and for quick
radius queries without the HTTP API. All lookups go through
`geoprox.places.directory.PlaceDirectory`.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from geoprox.catalog.loader import load_places
from geoprox.config.settings import get_settings
from geoprox.core.errors import GeoProxError
from geoprox.core.geo import GeoPoint, make_distance_fn
from geoprox.core.logging import configure_logging
from geoprox.places.directory import build_directory


def _cmd_import(args: argparse.Namespace) -> int:
    settings = get_settings()
    directory = build_directory(settings)
    path = args.catalog or settings.catalog.path
    places = load_places(path)
    count = directory.add_places(places)
    print(f"Imported {count} places from {path} into the {directory.store.name} store ({len(directory)} total).")
    return 0


def _cmd_nearby(args: argparse.Namespace) -> int:
    """Handle the `nearby` subcommand."""
    settings = get_settings()
    directory = build_directory(settings)
    radius_m = float(args.radius_m) if args.radius_m is not None else settings.query.default_radius_m
    result = directory.nearby(
        GeoPoint(lat=args.lat, lon=args.lon),
        radius_m,
        limit=args.limit,
        required_tags=args.tag or [],
        excluded_tags=args.exclude_tag or [],
    )

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return 0

    print(f"Within {result.radius_m:g} m of ({result.center.lat:.5f}, {result.center.lon:.5f}):")
    if not result.results:
        print("  (no places)")
    for i, match in enumerate(result.results, start=1):
        place = match.place
        tags = f"  [{', '.join(place.tags)}]" if place.tags else ""
        print(f"{i:>3}. {place.name} ({place.id})  {match.distance_m:,.0f} m{tags}")
    if result.meta.get("truncated"):
        print(f"  ... {result.meta['matched'] - len(result.results)} more (raise --limit)")
    return 0


def _cmd_remove(args: argparse.Namespace) -> int:
    directory = build_directory(get_settings())
    place = directory.remove_place(args.place_id)
    print(f"Removed {place.name} ({place.id}).")
    return 0


def _cmd_distance(args: argparse.Namespace) -> int:
    settings = get_settings()
    model = args.model or settings.index.distance_model
    distance = make_distance_fn(model, earth_radius_m=settings.index.earth_radius_m)
    a = GeoPoint(lat=args.lat1, lon=args.lon1)
    b = GeoPoint(lat=args.lat2, lon=args.lon2)
    print(f"{distance(a, b):.3f}")
    return 0


def _cmd_stats(_: argparse.Namespace) -> int:
    directory = build_directory(get_settings())
    print(json.dumps(directory.stats(), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the GeoProx CLI."""
    parser = argparse.ArgumentParser(prog="geoprox")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="Load a place catalog JSON file into the configured store.")
    imp.add_argument("--catalog", type=str, default=None, help="Defaults to catalog.path from config.")
    imp.set_defaults(func=_cmd_import)

    near = sub.add_parser("nearby", help="List places within a radius of a point, nearest first.")
    near.add_argument("--lat", required=True, type=float)
    near.add_argument("--lon", required=True, type=float)
    near.add_argument("--radius-m", dest="radius_m", type=float, default=None)
    near.add_argument("--limit", type=int, default=None)
    near.add_argument("--tag", action="append", default=[], help="Repeatable. Places must carry every tag.")
    near.add_argument("--exclude-tag", action="append", default=[], help="Repeatable.")
    near.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    near.set_defaults(func=_cmd_nearby)

    rm = sub.add_parser("remove", help="Remove a place by id.")
    rm.add_argument("place_id")
    rm.set_defaults(func=_cmd_remove)

    dist = sub.add_parser("distance", help="Distance in meters between two points.")
    dist.add_argument("lat1", type=float)
    dist.add_argument("lon1", type=float)
    dist.add_argument("lat2", type=float)
    dist.add_argument("lon2", type=float)
    dist.add_argument("--model", choices=["haversine", "vincenty"], default=None)
    dist.set_defaults(func=_cmd_distance)

    st = sub.add_parser("stats", help="Index and storage statistics.")
    st.set_defaults(func=_cmd_stats)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m geoprox.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    try:
        return int(func(args))
    except GeoProxError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())

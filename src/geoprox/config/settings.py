# src/geoprox/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/geoprox/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `GEOPROX_STORAGE_BACKEND`, `GEOPROX_SQLITE_PATH`)
- an external YAML file via `GEOPROX_CONFIG_PATH`

Design rule:
- Tuning knobs (cell size, distance model, limits) live in YAML, not hard-coded in the index.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from geoprox.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `geoprox.config`."""
    text = resources.files("geoprox.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


VINCENTY_MIN_PRUNE_MARGIN = 0.006


class AppSettings(BaseModel):
    name: str = "GeoProx"
    timezone: str = "UTC"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class IndexSettings(BaseModel):
    cell_size_m: float = Field(1000.0, gt=0)
    distance_model: Literal["haversine", "vincenty"] = "haversine"
    # Inflates the prune box so ellipsoidal distances are never cut by the spherical box.
    prune_margin: float = Field(0.01, ge=0, le=1)
    earth_radius_m: float = Field(6_371_008.8, gt=0)

    @model_validator(mode="after")
    def _margin_covers_ellipsoid(self) -> "IndexSettings":
        # Ellipsoidal distances run up to ~0.56% shorter than spherical ones.
        if self.distance_model == "vincenty" and self.prune_margin < VINCENTY_MIN_PRUNE_MARGIN:
            raise ValueError(
                f"prune_margin must be >= {VINCENTY_MIN_PRUNE_MARGIN} with distance_model=vincenty, "
                f"got {self.prune_margin}"
            )
        return self


class SqliteSettings(BaseModel):
    path: str = "data/geoprox.sqlite3"
    table: str = Field("places", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")


class ElasticsearchSettings(BaseModel):
    base_url: str = "http://localhost:9200"
    index_name: str = "geoprox-places"
    refresh: Literal["true", "false", "wait_for"] = "wait_for"
    scan_page_size: int = Field(500, ge=1, le=10_000)
    username: str | None = None
    password: str | None = None


class StorageSettings(BaseModel):
    backend: Literal["memory", "sqlite", "elasticsearch"] = "memory"
    sqlite: SqliteSettings = Field(default_factory=SqliteSettings)
    elasticsearch: ElasticsearchSettings = Field(default_factory=ElasticsearchSettings)


class CatalogSettings(BaseModel):
    path: str = "data/catalogs/places.json"
    seed_on_empty: bool = False


class QuerySettings(BaseModel):
    default_radius_m: float = Field(1000.0, ge=0)
    max_radius_m: float = Field(500_000.0, gt=0)
    default_limit: int = Field(20, ge=1)
    max_limit: int = Field(500, ge=1)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    query: QuerySettings = Field(default_factory=QuerySettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)
    log_level = os.getenv("GEOPROX_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    backend = os.getenv("GEOPROX_STORAGE_BACKEND")
    if backend:
        data.setdefault("storage", {})["backend"] = backend.strip().lower()

    sqlite_path = os.getenv("GEOPROX_SQLITE_PATH")
    if sqlite_path:
        data.setdefault("storage", {}).setdefault("sqlite", {})["path"] = sqlite_path

    es_url = os.getenv("GEOPROX_ES_URL")
    if es_url:
        data.setdefault("storage", {}).setdefault("elasticsearch", {})["base_url"] = es_url

    es_user = os.getenv("GEOPROX_ES_USERNAME")
    es_password = os.getenv("GEOPROX_ES_PASSWORD")
    if es_user:
        data.setdefault("storage", {}).setdefault("elasticsearch", {})["username"] = es_user
    if es_password:
        data.setdefault("storage", {}).setdefault("elasticsearch", {})["password"] = es_password

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("GEOPROX_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")

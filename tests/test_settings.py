from __future__ import annotations

import pytest
from pydantic import ValidationError

from geoprox.config.settings import Settings, get_logging_config, get_settings


@pytest.fixture
def fresh_settings(monkeypatch):
    # `get_settings` is lru_cached; clear it around each test so env changes are observed.
    for name in ("GEOPROX_CONFIG_PATH", "GEOPROX_STORAGE_BACKEND", "GEOPROX_SQLITE_PATH", "GEOPROX_ES_URL"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


def test_packaged_defaults(fresh_settings):
    settings = fresh_settings()

    assert settings.storage.backend == "memory"
    assert settings.index.distance_model == "haversine"
    assert settings.index.cell_size_m == 1000
    assert settings.index.earth_radius_m == pytest.approx(6_371_008.8)
    assert settings.query.max_limit >= settings.query.default_limit
    assert settings.storage.elasticsearch.index_name == "geoprox-places"


def test_env_overrides_storage_backend(fresh_settings, monkeypatch, tmp_path):
    db_path = tmp_path / "places.sqlite3"
    monkeypatch.setenv("GEOPROX_STORAGE_BACKEND", " SQLite ")
    monkeypatch.setenv("GEOPROX_SQLITE_PATH", str(db_path))
    monkeypatch.setenv("GEOPROX_ES_URL", "http://search.internal:9200")

    settings = fresh_settings()

    assert settings.storage.backend == "sqlite"
    assert settings.storage.sqlite.path == str(db_path)
    assert settings.storage.elasticsearch.base_url == "http://search.internal:9200"


def test_external_config_file(fresh_settings, monkeypatch, tmp_path):
    cfg = tmp_path / "geoprox.yaml"
    cfg.write_text("index:\n  cell_size_m: 250\n  distance_model: vincenty\n", encoding="utf-8")
    monkeypatch.setenv("GEOPROX_CONFIG_PATH", str(cfg))

    settings = fresh_settings()

    assert settings.index.cell_size_m == 250
    assert settings.index.distance_model == "vincenty"
    # Sections missing from the file fall back to model defaults.
    assert settings.storage.backend == "memory"


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings.model_validate({"index": {"cell_size_m": 0}})
    with pytest.raises(ValidationError):
        Settings.model_validate({"index": {"distance_model": "manhattan"}})
    with pytest.raises(ValidationError):
        Settings.model_validate({"storage": {"sqlite": {"table": "places; drop table x"}}})


def test_logging_config_is_a_dict_config():
    cfg = get_logging_config()
    assert cfg["version"] == 1
    assert "root" in cfg or "loggers" in cfg


def test_vincenty_requires_a_wide_enough_prune_margin():
    with pytest.raises(ValidationError, match="prune_margin"):
        Settings.model_validate({"index": {"distance_model": "vincenty", "prune_margin": 0.001}})

    ok = Settings.model_validate({"index": {"distance_model": "vincenty", "prune_margin": 0.006}})
    assert ok.index.prune_margin == 0.006
    # The sphere-only model has no such floor.
    assert Settings.model_validate({"index": {"prune_margin": 0}}).index.prune_margin == 0

from starlette.testclient import TestClient

from geoprox.api.app import app
from geoprox.config.settings import QuerySettings
from geoprox.core.spatial_index import ProximityIndex
from geoprox.domain.models import Place
from geoprox.places.directory import PlaceDirectory
from geoprox.storage.memory import MemoryStore


def _seeded_directory() -> PlaceDirectory:
    directory = PlaceDirectory(MemoryStore(), ProximityIndex(), query_settings=QuerySettings(max_radius_m=50_000))
    directory.add_place(
        Place(id="central-park", name="Central Park", location={"lat": 40.7829, "lon": -73.9654}, tags=["park"])
    )
    return directory


def _client(monkeypatch) -> TestClient:
    # Patch the cached directory factory so API tests never touch a real store.
    import geoprox.api.routes as routes

    directory = _seeded_directory()
    monkeypatch.setattr(routes, "_directory", lambda: directory)
    return TestClient(app)


def test_api_nearby_five_miles_from_empire_state(monkeypatch):
    with _client(monkeypatch) as c:
        resp = c.get("/api/nearby", params={"lat": 40.7484, "lon": -73.9857, "radius_m": 8046.72})
        assert resp.status_code == 200
        data = resp.json()
        assert [m["place"]["id"] for m in data["results"]] == ["central-park"]
        assert 4_000 < data["results"][0]["distance_m"] < 4_400

        resp = c.get("/api/nearby", params={"lat": 40.7484, "lon": -73.9857, "radius_m": 1000})
        assert resp.status_code == 200
        assert resp.json()["results"] == []


def test_api_nearby_tag_filters(monkeypatch):
    with _client(monkeypatch) as c:
        params = [("lat", 40.7484), ("lon", -73.9857), ("radius_m", 10_000), ("tag", "museum")]
        resp = c.get("/api/nearby", params=params)
    assert resp.status_code == 200
    assert resp.json()["results"] == []


def test_api_nearby_validation_errors(monkeypatch):
    with _client(monkeypatch) as c:
        bad_lat = c.get("/api/nearby", params={"lat": 95, "lon": 0, "radius_m": 10})
        bad_radius = c.get("/api/nearby", params={"lat": 0, "lon": 0, "radius_m": -5})
        too_far = c.get("/api/nearby", params={"lat": 0, "lon": 0, "radius_m": 60_000})

    assert bad_lat.status_code == 400
    assert bad_lat.json()["detail"]["code"] == "VALIDATION_ERROR"
    assert "lat" in bad_lat.json()["detail"]["message"]
    assert bad_radius.status_code == 400
    assert too_far.status_code == 400


def test_api_place_lifecycle(monkeypatch):
    with _client(monkeypatch) as c:
        created = c.post(
            "/api/places",
            json={"id": "esb", "name": "Empire State Building", "location": {"lat": 40.7484, "lon": -73.9857}},
        )
        assert created.status_code == 201
        assert created.json()["tags"] == []

        assert c.get("/api/places/esb").json()["name"] == "Empire State Building"
        assert c.get("/api/health").json()["entries"] == 2
        assert c.get("/api/stats").json()["index"]["entries"] == 2

        deleted = c.delete("/api/places/esb")
        assert deleted.status_code == 200
        assert deleted.json()["id"] == "esb"

        missing = c.delete("/api/places/esb")
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "NOT_FOUND"
        assert c.get("/api/places/esb").status_code == 404


def test_api_rejects_out_of_range_place(monkeypatch):
    with _client(monkeypatch) as c:
        resp = c.post("/api/places", json={"name": "Nowhere", "location": {"lat": 123, "lon": 0}})
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert "location.lat" in detail["message"]


def test_api_generates_place_ids(monkeypatch):
    with _client(monkeypatch) as c:
        resp = c.post("/api/places", json={"name": "Somewhere", "location": {"lat": 1, "lon": 2}})
        assert resp.status_code == 201
        place_id = resp.json()["id"]
        assert place_id
        assert c.get(f"/api/places/{place_id}").status_code == 200


class BrokenDirectory:
    def add_place(self, place):
        raise RuntimeError("disk on fire")

    def nearby(self, *args, **kwargs):
        raise RuntimeError("index exploded")


def test_api_unexpected_errors_map_to_internal_error(monkeypatch):
    import geoprox.api.routes as routes

    monkeypatch.setattr(routes, "_directory", lambda: BrokenDirectory())
    with TestClient(app) as c:
        nearby = c.get("/api/nearby", params={"lat": 0, "lon": 0, "radius_m": 10})
        created = c.post("/api/places", json={"name": "X", "location": {"lat": 0, "lon": 0}})

    assert nearby.status_code == 500
    assert nearby.json()["detail"] == {"code": "INTERNAL_ERROR", "message": "index exploded"}
    assert created.status_code == 500
    assert created.json()["detail"]["code"] == "INTERNAL_ERROR"


def test_api_missing_query_params_use_error_shape(monkeypatch):
    with _client(monkeypatch) as c:
        resp = c.get("/api/nearby", params={"lat": 0})
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"
    assert "query.lon" in resp.json()["detail"]["message"]

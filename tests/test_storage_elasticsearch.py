import httpx
import pytest

from geoprox.config.settings import ElasticsearchSettings
from geoprox.core.errors import NotFound, StorageError
from geoprox.core.geo import GeoPoint, haversine_m
from geoprox.core.spatial_index import IndexedEntry
from geoprox.domain.models import Place
from geoprox.storage.elasticsearch import INDEX_MAPPING, ElasticsearchStore

BASE = "http://es.test:9200"
EMPIRE_STATE = GeoPoint(lat=40.7484, lon=-73.9857)


def _status_error(method: str, url: str, status: int, text: str = "") -> httpx.HTTPStatusError:
    request = httpx.Request(method, url)
    response = httpx.Response(status, request=request, text=text)
    return httpx.HTTPStatusError(str(status), request=request, response=response)


class FakeElasticsearch:
    """Just enough of the Elasticsearch REST API for the store."""

    def __init__(self) -> None:
        self.index_exists = False
        self.docs: dict[str, dict] = {}
        self.calls: list[tuple[str, str, dict | None]] = []
        self.searches: list[dict] = []

    def __call__(self, method, url, *, json=None, params=None, headers=None, auth=None, timeout_seconds=15):
        self.calls.append((method, url, params))
        path = url[len(BASE):]
        parts = [p for p in path.split("/") if p]
        if method == "PUT" and len(parts) == 1:
            if self.index_exists:
                raise _status_error(method, url, 400, '{"error":{"type":"resource_already_exists_exception"}}')
            assert json == INDEX_MAPPING
            self.index_exists = True
            return {"acknowledged": True}
        if method == "PUT" and parts[1] == "_doc":
            self.index_exists = True
            self.docs[parts[2]] = json
            return {"result": "created"}
        if method == "DELETE" and parts[1] == "_doc":
            if parts[2] not in self.docs:
                raise _status_error(method, url, 404, '{"result":"not_found"}')
            del self.docs[parts[2]]
            return {"result": "deleted"}
        if method == "POST" and parts[1] == "_search":
            if not self.index_exists:
                raise _status_error(method, url, 404, '{"error":{"type":"index_not_found_exception"}}')
            self.searches.append(json)
            return self._search(json)
        raise AssertionError(f"unexpected request {method} {url}")

    def _search(self, body: dict) -> dict:
        geo = body["query"].get("bool", {}).get("filter", {}).get("geo_distance")
        if geo and float(geo["distance"].rstrip("m")) <= 0:
            raise _status_error("POST", BASE, 400, "distance must be greater than zero")
        rows = []
        for doc in self.docs.values():
            if geo:
                anchor = GeoPoint(lat=geo["point"]["lat"], lon=geo["point"]["lon"])
                d = haversine_m(anchor, GeoPoint(lat=doc["point"]["lat"], lon=doc["point"]["lon"]))
                if d > float(geo["distance"].rstrip("m")):
                    continue
                sort = [d, doc["id"]]
            else:
                sort = [doc["id"]]
            rows.append({"_id": doc["id"], "_source": doc, "sort": sort})
        rows.sort(key=lambda h: h["sort"])
        after = body.get("search_after")
        if after is not None:
            rows = [h for h in rows if h["sort"] > after]
        return {"hits": {"hits": rows[: body["size"]]}}


def _entry(place_id: str, lat: float, lon: float) -> IndexedEntry[Place]:
    place = Place(id=place_id, name=place_id.title(), location={"lat": lat, "lon": lon})
    return IndexedEntry(id=place_id, point=GeoPoint(lat=lat, lon=lon), payload=place)


@pytest.fixture
def fake_es(monkeypatch):
    fake = FakeElasticsearch()
    monkeypatch.setattr("geoprox.storage.elasticsearch.request_json", fake)
    return fake


def _store(**kwargs) -> ElasticsearchStore:
    return ElasticsearchStore(ElasticsearchSettings(base_url=BASE + "/", **kwargs))


def test_elasticsearch_store_insert_query_remove(fake_es):
    store = _store()
    store.ensure_index()
    store.insert(_entry("central-park", 40.7829, -73.9654))
    store.insert(_entry("times-square", 40.7580, -73.9855))

    hits = store.query(EMPIRE_STATE, 8046.72)
    assert [n.entry.id for n in hits] == ["times-square", "central-park"]
    assert hits[1].entry.payload.name == "Central-Park"
    assert store.query(EMPIRE_STATE, 1000) == []

    store.remove("central-park")
    assert list(fake_es.docs) == ["times-square"]
    with pytest.raises(NotFound):
        store.remove("central-park")

    put_doc = next(c for c in fake_es.calls if c[0] == "PUT" and "_doc" in c[1])
    assert put_doc[1] == f"{BASE}/geoprox-places/_doc/central-park"
    assert put_doc[2] == {"refresh": "wait_for"}


def test_elasticsearch_store_ensure_index_is_idempotent(fake_es):
    store = _store()
    store.ensure_index()
    store.ensure_index()
    assert fake_es.index_exists


def test_elasticsearch_store_pages_through_entries(fake_es):
    store = _store(scan_page_size=2)
    for i in range(5):
        store.insert(_entry(f"p{i}", float(i), float(i)))

    assert [e.id for e in store.iter_entries()] == ["p0", "p1", "p2", "p3", "p4"]
    searches = [c for c in fake_es.calls if c[1].endswith("/_search")]
    assert len(searches) == 3


def test_elasticsearch_store_missing_index_is_empty(fake_es):
    store = _store()
    assert list(store.iter_entries()) == []
    assert store.query(EMPIRE_STATE, 1000) == []


def test_elasticsearch_store_wraps_transport_errors(monkeypatch):
    def broken(method, url, **_kwargs):
        raise _status_error(method, url, 503, "unavailable")

    monkeypatch.setattr("geoprox.storage.elasticsearch.request_json", broken)
    with pytest.raises(StorageError, match="503"):
        _store().insert(_entry("a", 0.0, 0.0))

    def unreachable(method, url, **_kwargs):
        raise httpx.ConnectError("connection refused", request=httpx.Request(method, url))

    monkeypatch.setattr("geoprox.storage.elasticsearch.request_json", unreachable)
    with pytest.raises(StorageError, match="connection refused"):
        _store().query(EMPIRE_STATE, 10)


def test_elasticsearch_store_encodes_ids(fake_es):
    store = _store()
    store.insert(_entry("a/b c", 0.0, 0.0))
    assert fake_es.calls[-1][1] == f"{BASE}/geoprox-places/_doc/a%2Fb%20c"


def test_elasticsearch_store_zero_radius_returns_the_point(fake_es):
    store = _store()
    store.insert(_entry("here", 1.0, 1.0))
    store.insert(_entry("near", 1.0, 1.00001))

    hits = store.query(GeoPoint(lat=1.0, lon=1.0), 0)

    assert [n.entry.id for n in hits] == ["here"]
    assert hits[0].distance_m == 0.0
    sent = fake_es.searches[-1]["query"]["bool"]["filter"]["geo_distance"]["distance"]
    assert float(sent.rstrip("m")) > 0

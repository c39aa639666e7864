import json

import pytest

from walkgrid import config
from walkgrid.cache import Cache, make_request_cache_key
from walkgrid.geo import GridPoint
from walkgrid.http import HttpClient, RequestMetrics, UpstreamError
from walkgrid.places_client import Candidate, PlacesClient, build_nearby_search_body
from walkgrid.routes_client import NO_ROUTE, DistanceResult, RoutesClient

ORIGIN = GridPoint(lat=37.7, lng=-122.4)

PLACES_PAYLOAD = {
    "places": [
        {"id": "p1", "displayName": {"text": "Market"}, "location": {"latitude": 37.701, "longitude": -122.401}, "types": ["grocery_store"]},
        {"id": "p2", "displayName": {"text": "Deli"}, "location": {"latitude": 37.702, "longitude": -122.402}, "types": ["grocery_store"]},
    ]
}

MATRIX_NDJSON = "\n".join(
    json.dumps(el)
    for el in [
        {"destinationIndex": 1, "condition": "ROUTE_EXISTS", "distanceMeters": 420, "duration": "330s"},
        {"destinationIndex": 0, "condition": "ROUTE_NOT_FOUND"},
    ]
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self.headers = {}
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses_by_url):
        self.responses_by_url = responses_by_url
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append(url)
        return self.responses_by_url[url]


def make_http_client(responses_by_url):
    client = HttpClient(api_key="dummy", timeout=1, sleep=lambda _s: None)
    client.session = FakeSession(responses_by_url)
    return client


def default_responses():
    return {
        config.PLACES_NEARBY_SEARCH_URL: FakeResponse(payload=PLACES_PAYLOAD),
        config.ROUTES_MATRIX_URL: FakeResponse(text=MATRIX_NDJSON),
    }


def test_network_counters_without_cache():
    metrics = RequestMetrics()
    http_client = make_http_client(default_responses())
    places_client = PlacesClient(http_client, metrics=metrics)
    routes_client = RoutesClient(http_client, metrics=metrics)

    for _ in range(2):
        candidates = places_client.search_nearby(ORIGIN, "grocery_store")
        distances = routes_client.compute_walking_distances(ORIGIN, candidates)

    assert [c.id for c in candidates] == ["p1", "p2"]
    assert distances == [NO_ROUTE, DistanceResult(ok=True, distance_meters=420, duration="330s")]
    assert metrics.network_places == 2
    assert metrics.network_routes == 2
    assert metrics.cache_hits_places == 0
    assert metrics.cache_hits_routes == 0


def test_cache_serves_repeat_requests(tmp_path):
    metrics = RequestMetrics()
    cache = Cache(str(tmp_path / "cache.db"))
    http_client = make_http_client(default_responses())
    places_client = PlacesClient(http_client, cache, metrics=metrics)
    routes_client = RoutesClient(http_client, cache, metrics=metrics)

    first = routes_client.compute_walking_distances(ORIGIN, places_client.search_nearby(ORIGIN, "grocery_store"))
    second = routes_client.compute_walking_distances(ORIGIN, places_client.search_nearby(ORIGIN, "grocery_store"))

    assert first == second
    assert metrics.network_places == 1
    assert metrics.network_routes == 1
    assert metrics.cache_hits_places == 1
    assert metrics.cache_hits_routes == 1
    assert http_client.session.calls.count(config.PLACES_NEARBY_SEARCH_URL) == 1
    assert http_client.session.calls.count(config.ROUTES_MATRIX_URL) == 1
    row = cache.conn.execute("SELECT created_at FROM route_matrix_cache").fetchone()
    assert row["created_at"].endswith("+00:00")
    cache.close()


def test_preloaded_cache_avoids_network():
    metrics = RequestMetrics()
    cache = Cache(":memory:")
    http_client = make_http_client({})
    places_client = PlacesClient(http_client, cache, metrics=metrics)

    body = build_nearby_search_body(ORIGIN, "park", places_client.radius_m, places_client.max_results)
    key = make_request_cache_key(config.PLACES_NEARBY_SEARCH_URL, places_client.field_mask, body)
    cache.set_search_cache(key, "park", {"places": [{"id": "x", "displayName": {"text": "Green"}}]})

    candidates = places_client.search_nearby(ORIGIN, "park")

    assert [c.display_name for c in candidates] == ["Green"]
    assert metrics.network_places == 0
    assert metrics.cache_hits_places == 1
    assert http_client.session.calls == []
    cache.close()


def test_no_cache_flag_bypasses_cache():
    metrics = RequestMetrics()
    cache = Cache(":memory:")
    http_client = make_http_client(default_responses())
    places_client = PlacesClient(http_client, cache, no_cache=True, metrics=metrics)

    places_client.search_nearby(ORIGIN, "grocery_store")
    places_client.search_nearby(ORIGIN, "grocery_store")

    assert metrics.network_places == 2
    assert metrics.cache_hits_places == 0
    cache.close()


def test_places_error_names_category_and_is_not_cached():
    cache = Cache(":memory:")
    http_client = make_http_client(
        {config.PLACES_NEARBY_SEARCH_URL: FakeResponse(status_code=403, text="API key invalid")}
    )
    places_client = PlacesClient(http_client, cache)

    with pytest.raises(UpstreamError) as excinfo:
        places_client.search_nearby(ORIGIN, "bus_stop")

    assert "Places bus_stop 403" in str(excinfo.value)
    body = build_nearby_search_body(ORIGIN, "bus_stop")
    key = make_request_cache_key(config.PLACES_NEARBY_SEARCH_URL, places_client.field_mask, body)
    assert cache.get_search_cache(key) is None
    cache.close()


def test_route_matrix_error_raises_upstream_error():
    http_client = make_http_client(
        {config.ROUTES_MATRIX_URL: FakeResponse(status_code=400, text="bad request")}
    )
    routes_client = RoutesClient(http_client)
    candidates = [Candidate(id="a", display_name="A", latitude=1.0, longitude=2.0)]

    with pytest.raises(UpstreamError) as excinfo:
        routes_client.compute_walking_distances(ORIGIN, candidates)

    assert excinfo.value.status_code == 400


def test_empty_candidates_skip_route_matrix():
    http_client = make_http_client({})
    routes_client = RoutesClient(http_client)
    assert routes_client.compute_walking_distances(ORIGIN, []) == []
    assert http_client.session.calls == []

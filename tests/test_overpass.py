import httpx
import pytest

from mealy.core.errors import UpstreamError, UpstreamTimeoutError, ValidationError
from mealy.services.overpass import OverpassFetcher

from conftest import node, way

URL = "https://overpass.test/api/interpreter"


class Recorder:
    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.respond(request)


def make_fetcher(respond):
    rec = Recorder(respond)
    client = httpx.Client(transport=httpx.MockTransport(rec))
    fetcher = OverpassFetcher(
        url=URL,
        timeout_s=5.0,
        query_timeout_s=15,
        amenities=["restaurant", "fast_food"],
        user_agent="Midi-Mealy/1.0",
        radius_bounds=(10.0, 10000.0),
        max_results=1000,
        client=client,
    )
    return fetcher, rec


def ok(payload):
    return lambda request: httpx.Response(200, json=payload)


# ──────────────────────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize("radius", [9, 9.99, 10000.01, 20000])
def test_radius_out_of_range_rejected_without_network(radius):
    fetcher, rec = make_fetcher(ok({"elements": []}))
    with pytest.raises(ValidationError, match="Radius must be between 10 and 10000 meters"):
        fetcher.fetch(48.8566, 2.3522, radius)
    assert rec.requests == []


@pytest.mark.parametrize("radius", [10, 10000])
def test_radius_bounds_inclusive(radius):
    fetcher, _ = make_fetcher(ok({"elements": []}))
    assert fetcher.validate(48.8566, 2.3522, radius) == (48.8566, 2.3522, float(radius))


def test_latitude_bounds():
    fetcher, rec = make_fetcher(ok({"elements": []}))
    assert fetcher.validate(90, 0, 800)[0] == 90.0
    assert fetcher.validate(-90, 0, 800)[0] == -90.0
    with pytest.raises(ValidationError, match="Latitude must be between -90 and 90"):
        fetcher.fetch(90.0001, 0, 800)
    assert rec.requests == []


def test_longitude_bounds():
    fetcher, _ = make_fetcher(ok({"elements": []}))
    assert fetcher.validate(0, 180, 800)[1] == 180.0
    with pytest.raises(ValidationError, match="Longitude must be between -180 and 180"):
        fetcher.validate(0, -180.5, 800)


@pytest.mark.parametrize("bad", ["48.8", None, True, float("nan"), float("inf")])
def test_non_numeric_coordinates_rejected(bad):
    fetcher, _ = make_fetcher(ok({"elements": []}))
    with pytest.raises(ValidationError):
        fetcher.validate(bad, 2.3522, 800)


def test_validation_error_is_value_error():
    fetcher, _ = make_fetcher(ok({"elements": []}))
    with pytest.raises(ValueError):
        fetcher.validate(0, 0, 1)


# ──────────────────────────────────────────────────────────────
# Query
# ──────────────────────────────────────────────────────────────

def test_build_query():
    fetcher, _ = make_fetcher(ok({"elements": []}))
    ql = fetcher.build_query(48.8566, 2.3522, 800.0)
    around = "(around:800,48.8566,2.3522)"
    assert ql == (
        "[out:json][timeout:15];("
        f'node["amenity"="restaurant"]{around};'
        f'way["amenity"="restaurant"]{around};'
        f'relation["amenity"="restaurant"]{around};'
        f'node["amenity"="fast_food"]{around};'
        f'way["amenity"="fast_food"]{around};'
        f'relation["amenity"="fast_food"]{around};'
        ");out center 1000;"
    )


# ──────────────────────────────────────────────────────────────
# Transport
# ──────────────────────────────────────────────────────────────

def test_fetch_success_returns_raw_elements():
    elements = [node(1, "Chez Marcel"), way(2, "Le Bistrot")]
    fetcher, rec = make_fetcher(ok({"version": 0.6, "elements": elements}))

    out = fetcher.fetch(48.8566, 2.3522, 800)

    assert out == elements
    assert len(rec.requests) == 1
    req = rec.requests[0]
    assert req.method == "POST"
    assert str(req.url) == URL
    assert req.headers["user-agent"] == "Midi-Mealy/1.0"
    assert "(around:800,48.8566,2.3522)" in req.content.decode()


@pytest.mark.parametrize("status", [400, 500, 502])
def test_http_error_becomes_upstream_error(status):
    fetcher, _ = make_fetcher(lambda r: httpx.Response(status, text="overloaded"))
    with pytest.raises(UpstreamError) as ei:
        fetcher.fetch(48.8566, 2.3522, 800)
    assert ei.value.status == status
    assert not ei.value.rate_limited


def test_rate_limited():
    fetcher, _ = make_fetcher(lambda r: httpx.Response(429, text="slow down"))
    with pytest.raises(UpstreamError) as ei:
        fetcher.fetch(48.8566, 2.3522, 800)
    assert ei.value.rate_limited


def test_non_json_body():
    fetcher, _ = make_fetcher(lambda r: httpx.Response(200, content=b"<html>busy</html>"))
    with pytest.raises(UpstreamError, match="Invalid response format"):
        fetcher.fetch(48.8566, 2.3522, 800)


@pytest.mark.parametrize("payload", [{"remark": "nothing"}, {"elements": "nope"}, [1, 2]])
def test_missing_elements_list(payload):
    fetcher, _ = make_fetcher(ok(payload))
    with pytest.raises(UpstreamError):
        fetcher.fetch(48.8566, 2.3522, 800)


def test_transport_timeout():
    def respond(request):
        raise httpx.ReadTimeout("slow", request=request)

    fetcher, _ = make_fetcher(respond)
    with pytest.raises(UpstreamTimeoutError) as ei:
        fetcher.fetch(48.8566, 2.3522, 800)
    assert isinstance(ei.value, TimeoutError)


def test_connection_failure():
    def respond(request):
        raise httpx.ConnectError("refused", request=request)

    fetcher, _ = make_fetcher(respond)
    with pytest.raises(UpstreamError) as ei:
        fetcher.fetch(48.8566, 2.3522, 800)
    assert ei.value.status is None


def test_runtime_timeout_remark():
    remark = 'runtime error: Query timed out in "query" at line 1 after 16 seconds.'
    fetcher, _ = make_fetcher(ok({"elements": [], "remark": remark}))
    with pytest.raises(UpstreamTimeoutError):
        fetcher.fetch(48.8566, 2.3522, 800)


def test_other_runtime_remark():
    remark = "runtime error: Query run out of memory using about 2048 MB of RAM."
    fetcher, _ = make_fetcher(ok({"elements": [], "remark": remark}))
    with pytest.raises(UpstreamError) as ei:
        fetcher.fetch(48.8566, 2.3522, 800)
    assert not isinstance(ei.value, UpstreamTimeoutError)


def test_harmless_remark_ignored():
    fetcher, _ = make_fetcher(ok({"elements": [node(1, "A")], "remark": "partial data"}))
    assert len(fetcher.fetch(48.8566, 2.3522, 800)) == 1

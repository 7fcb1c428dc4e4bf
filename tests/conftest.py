from datetime import datetime, timedelta, timezone

import pytest

from mealy.core.contracts import POIRecord, ReviewRow
from mealy.core.storage import connect_sqlite, ensure_schema
from mealy.services.cache_store import SqliteCacheStore
from mealy.services.overpass import OverpassFetcher
from mealy.services.reviews import ReviewSource

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeFetcher(OverpassFetcher):
    """Real validation, canned elements, no network."""

    def __init__(self, elements=None, exc=None):
        super().__init__(
            url="https://overpass.test/api/interpreter",
            amenities=["restaurant", "fast_food"],
            radius_bounds=(10.0, 10000.0),
            max_results=1000,
        )
        self.elements = elements if elements is not None else []
        self.exc = exc
        self.calls = []

    def fetch(self, lat, lng, radius):
        lat_f, lng_f, radius_f = self.validate(lat, lng, radius)
        self.calls.append((lat_f, lng_f, radius_f))
        if self.exc is not None:
            raise self.exc
        return list(self.elements)


class FakeReviews(ReviewSource):
    def __init__(self, rows=(), exc=None):
        self.rows = [
            ReviewRow(restaurant_id=r[0], rating=r[1], restaurant_name=(r[2] if len(r) > 2 else None))
            for r in rows
        ]
        self.exc = exc
        self.calls = []

    def fetch_reviews(self, poi_ids):
        self.calls.append(list(poi_ids))
        if self.exc is not None:
            raise self.exc
        return list(self.rows)


def add_review(conn, rid, rating, name=None, created_at="2024-03-01T12:00:00.000000Z"):
    conn.execute(
        "INSERT INTO reviews (restaurant_id, restaurant_name, rating, created_at) VALUES (?, ?, ?, ?)",
        (rid, name, rating, created_at),
    )
    conn.commit()


def node(osm_id, name, lat=48.8566, lon=2.3522, **tags):
    t = {"amenity": "restaurant"}
    if name is not None:
        t["name"] = name
    t.update(tags)
    return {"type": "node", "id": osm_id, "lat": lat, "lon": lon, "tags": t}


def way(osm_id, name, lat=48.857, lon=2.353, **tags):
    t = {"amenity": "restaurant", "name": name}
    t.update(tags)
    return {"type": "way", "id": osm_id, "center": {"lat": lat, "lon": lon}, "tags": t}


def poi(n, name=None, lat=48.8566, lng=2.3522):
    return POIRecord(
        id=f"osm_{n}",
        name=name or f"Place {n}",
        latitude=lat,
        longitude=lng,
        source="osm",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def conn():
    c = connect_sqlite(":memory:")
    ensure_schema(c)
    yield c
    c.close()


@pytest.fixture
def store(conn, clock):
    return SqliteCacheStore(conn, clock=clock)


@pytest.fixture
def paris_elements():
    return [
        node(1, "Chez Marcel", cuisine="french", **{"addr:street": "Rue Oberkampf", "addr:city": "Paris"}),
        node(2, None),
        way(3, "Le Bistrot"),
        node(4, "Pho 14", cuisine="vietnamese", amenity="fast_food"),
    ]

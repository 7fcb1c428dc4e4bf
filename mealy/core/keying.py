from __future__ import annotations

# 4 decimal places ~ 11 m: repeated geolocation of the same office lands in one bucket.
BUCKET_PRECISION = 4
BUCKET_PREFIX = "restaurants"


def _quantize(v: float) -> str:
    # "+ 0.0" folds -0.0 into 0.0 so both sides of the equator/meridian share a key
    q = round(float(v), BUCKET_PRECISION) + 0.0
    return f"{q:.{BUCKET_PRECISION}f}"


def _radius_str(radius: float) -> str:
    r = float(radius)
    if r.is_integer():
        return str(int(r))
    return repr(r)


def bucket_key(lat: float, lng: float, radius: float) -> str:
    """
    Stable cache partition key for a radius query, e.g.
    ``restaurants_48.8566_2.3522_800``.
    """
    return f"{BUCKET_PREFIX}_{_quantize(lat)}_{_quantize(lng)}_{_radius_str(radius)}"

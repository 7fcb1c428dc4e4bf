from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from mealy.core.contracts import POIRecord

DEFAULT_SOURCE = "osm"
DEFAULT_LIMIT = 1000

_ADDRESS_TAGS = ("addr:housenumber", "addr:street", "addr:postcode", "addr:city")


def _tag_str(tags: Dict[str, Any], key: str) -> Optional[str]:
    v = tags.get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _coord(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _coords(el: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Point features carry lat/lon; ways/relations a precomputed `center`."""
    lat, lon = _coord(el.get("lat")), _coord(el.get("lon"))
    if lat is None or lon is None:
        center = el.get("center")
        if not isinstance(center, dict):
            return None
        lat, lon = _coord(center.get("lat")), _coord(center.get("lon"))
        if lat is None or lon is None:
            return None

    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def compose_address(tags: Dict[str, Any]) -> Optional[str]:
    parts = [p for p in (_tag_str(tags, k) for k in _ADDRESS_TAGS) if p]
    return ", ".join(parts) if parts else None


def element_to_poi(el: Dict[str, Any], *, source: str = DEFAULT_SOURCE) -> Optional[POIRecord]:
    if not isinstance(el, dict):
        return None

    tags = el.get("tags")
    if not isinstance(tags, dict):
        return None

    name = _tag_str(tags, "name")
    if not name:
        return None

    coords = _coords(el)
    if coords is None:
        return None

    osm_id = el.get("id")
    if osm_id is None or isinstance(osm_id, bool):
        return None

    lat, lon = coords
    return POIRecord(
        # Same form the web app stores reviews under.
        id=f"{source}_{osm_id}",
        name=name,
        latitude=lat,
        longitude=lon,
        cuisine=_tag_str(tags, "cuisine"),
        address=compose_address(tags),
        phone=_tag_str(tags, "phone"),
        website=_tag_str(tags, "website"),
        opening_hours=_tag_str(tags, "opening_hours"),
        source=source,
    )


def normalize(
    elements: Iterable[Dict[str, Any]],
    *,
    source: str = DEFAULT_SOURCE,
    limit: int = DEFAULT_LIMIT,
) -> List[POIRecord]:
    """
    Raw Overpass elements -> canonical POIs.

    Pure: drops elements without a name or usable coordinates, keeps the
    first occurrence of a repeated id, and truncates to `limit` after
    filtering (source order preserved).
    """
    out: List[POIRecord] = []
    seen: set[str] = set()
    for el in elements:
        if len(out) >= limit:
            break
        poi = element_to_poi(el, source=source)
        if poi is None or poi.id in seen:
            continue
        seen.add(poi.id)
        out.append(poi)
    return out

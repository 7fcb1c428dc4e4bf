from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from mealy.core.contracts import POIRecord, PoisResponse
from mealy.core.errors import (
    StoreError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    bad_request,
    gateway_timeout,
    not_found,
    service_unavailable,
)
from mealy.core.keying import bucket_key
from mealy.core.settings import settings
from mealy.services.poi_cache import PoiCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/restaurants")

MSG_TIMEOUT = "The search timed out. Try again with a smaller radius."
MSG_RATE_LIMITED = "Too many requests. Please wait a moment before trying again."
MSG_UPSTREAM = "The restaurant directory is unavailable right now. Please try again in a moment."


def get_poi_cache() -> PoiCache:
    raise RuntimeError("PoiCache must be provided by app dependency override")


# ──────────────────────────────────────────────────────────────
# /restaurants
# ──────────────────────────────────────────────────────────────

@router.get("", response_model=PoisResponse)
def restaurants_near(
    lat: float = Query(...),
    lng: float = Query(...),
    radius: Optional[float] = Query(None),
    cache: PoiCache = Depends(get_poi_cache),
) -> PoisResponse:
    r = settings.poi_default_radius_m if radius is None else radius
    try:
        items = cache.get_pois(lat, lng, r)
    except ValidationError as e:
        bad_request("invalid_query", str(e))
    except UpstreamTimeoutError as e:
        logger.warning("restaurants_near timeout lat=%s lng=%s radius=%s err=%s", lat, lng, r, e)
        gateway_timeout("upstream_timeout", MSG_TIMEOUT)
    except UpstreamError as e:
        logger.warning("restaurants_near upstream status=%s err=%s", e.status, e)
        if e.rate_limited:
            service_unavailable("upstream_rate_limited", MSG_RATE_LIMITED)
        service_unavailable("upstream_unavailable", MSG_UPSTREAM)

    return PoisResponse(bucket_key=bucket_key(lat, lng, r), items=items)


# ──────────────────────────────────────────────────────────────
# /restaurants/{poi_id}
# ──────────────────────────────────────────────────────────────

@router.get("/{poi_id}", response_model=POIRecord)
def restaurant_detail(
    poi_id: str,
    cache: PoiCache = Depends(get_poi_cache),
) -> POIRecord:
    try:
        poi = cache.get_poi_by_id(poi_id)
    except StoreError as e:
        logger.error("restaurant_detail_failed id=%s err=%s", poi_id, e)
        service_unavailable("cache_unavailable", MSG_UPSTREAM)
    if poi is None:
        not_found("restaurant_not_found", "Restaurant not found or expired")
    return poi

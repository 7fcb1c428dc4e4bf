from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
# POIs
# ──────────────────────────────────────────────────────────────

class POIRecord(BaseModel):
    """
    Normalized restaurant / fast-food venue.

    Frozen: the same upstream element always yields an equal record, which
    the cache relies on for generation diffing and dedup.
    """

    model_config = ConfigDict(frozen=True)

    id: str                         # "<source>_<native id>", e.g. "osm_123"
    name: str = Field(min_length=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    cuisine: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[str] = None
    source: str


class PoisResponse(BaseModel):
    bucket_key: str
    items: List[POIRecord]


# ──────────────────────────────────────────────────────────────
# Ratings
# ──────────────────────────────────────────────────────────────

class ReviewRow(BaseModel):
    restaurant_id: str
    rating: int = Field(ge=1, le=5)
    created_at: Optional[str] = None
    restaurant_name: Optional[str] = None


class RatingSummary(BaseModel):
    poi_id: str
    average_rating: float
    review_count: int = Field(ge=0)


class RankedEntry(BaseModel):
    id: str
    name: Optional[str] = None
    average_rating: float
    review_count: int


class RatingsRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)


class TopRatedRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)
    limit: int = Field(default=3, ge=1, le=100)


class RatingsResponse(BaseModel):
    ratings: Dict[str, RatingSummary] = Field(default_factory=dict)


class TopRatedResponse(BaseModel):
    items: List[RankedEntry] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────
# Cache housekeeping
# ──────────────────────────────────────────────────────────────

class CacheStats(BaseModel):
    valid: int
    expired: int
    total: int


class SweepResponse(BaseModel):
    deleted: int

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from mealy.core.contracts import RatingsRequest, RatingsResponse, TopRatedRequest, TopRatedResponse
from mealy.core.errors import StoreError, service_unavailable
from mealy.services.ratings import RatingAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ratings")

MSG_REVIEWS_DOWN = "Ratings are unavailable right now. Please try again later."


def get_rating_aggregator() -> RatingAggregator:
    raise RuntimeError("RatingAggregator must be provided by app dependency override")


@router.post("", response_model=RatingsResponse)
def ratings(
    req: RatingsRequest,
    aggregator: RatingAggregator = Depends(get_rating_aggregator),
) -> RatingsResponse:
    try:
        return RatingsResponse(ratings=aggregator.aggregate(req.ids))
    except StoreError as e:
        logger.error("ratings_failed ids=%d err=%s", len(req.ids), e)
        service_unavailable("reviews_unavailable", MSG_REVIEWS_DOWN)


@router.post("/top", response_model=TopRatedResponse)
def top_rated(
    req: TopRatedRequest,
    aggregator: RatingAggregator = Depends(get_rating_aggregator),
) -> TopRatedResponse:
    try:
        return TopRatedResponse(items=aggregator.top_rated(req.ids, req.limit))
    except StoreError as e:
        logger.error("top_rated_failed ids=%d err=%s", len(req.ids), e)
        service_unavailable("reviews_unavailable", MSG_REVIEWS_DOWN)

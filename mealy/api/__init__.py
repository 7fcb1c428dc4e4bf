from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .restaurants import router as restaurants_router
from .ratings import router as ratings_router
from .cache import router as cache_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(restaurants_router)
api_router.include_router(ratings_router)
api_router.include_router(cache_router)

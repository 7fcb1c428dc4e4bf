from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


# ──────────────────────────────────────────────────────────────
# Service errors
# ──────────────────────────────────────────────────────────────

class PoiServiceError(Exception):
    """Base class for everything the POI cache / ratings layer raises."""


class ValidationError(PoiServiceError, ValueError):
    """Bad lat/lng/radius. Raised before any network call; never retried."""


class UpstreamError(PoiServiceError):
    """Non-2xx or malformed response from the geodata service."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class UpstreamTimeoutError(PoiServiceError, TimeoutError):
    """Transport timeout or Overpass evaluation timeout."""


class StoreError(PoiServiceError):
    """Cache or review persistence failure."""


# ──────────────────────────────────────────────────────────────
# HTTP helpers
# ──────────────────────────────────────────────────────────────

def bad_request(code: str, message: str):
    raise HTTPException(status_code=400, detail={"code": code, "message": message})


def not_found(code: str, message: str):
    raise HTTPException(status_code=404, detail={"code": code, "message": message})


def service_unavailable(code: str, message: str):
    raise HTTPException(status_code=503, detail={"code": code, "message": message})


def gateway_timeout(code: str, message: str):
    raise HTTPException(status_code=504, detail={"code": code, "message": message})

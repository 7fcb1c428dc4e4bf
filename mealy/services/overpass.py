"""
Overpass (OpenStreetMap) transport for restaurant lookups.

Only transport lives here: validate the query, build Overpass QL, POST it,
and hand back the raw `elements` list. Interpretation of tags is the
normalizer's job.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
import orjson

from mealy.core.errors import UpstreamError, UpstreamTimeoutError, ValidationError
from mealy.core.settings import settings

logger = logging.getLogger(__name__)

_BODY_LOG_CHARS = 800


def _as_number(name: str, v: Any) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValidationError(f"'{name}' must be a number")
    f = float(v)
    if not math.isfinite(f):
        raise ValidationError(f"'{name}' must be a finite number")
    return f


def _fmt_num(v: float) -> str:
    return str(int(v)) if float(v).is_integer() else repr(float(v))


class OverpassFetcher:
    """
    Single `around` query against Overpass for a set of amenity values.

    Timeouts:
      - `[timeout:N]` in the QL bounds server-side evaluation;
      - the httpx timeout bounds the whole request.
    No retries: callers get the specific failure and decide.
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        timeout_s: float | None = None,
        query_timeout_s: int | None = None,
        amenities: Sequence[str] | None = None,
        user_agent: str | None = None,
        radius_bounds: Tuple[float, float] | None = None,
        max_results: int | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url or settings.overpass_url
        self.timeout_s = float(timeout_s if timeout_s is not None else settings.overpass_timeout_s)
        self.query_timeout_s = int(query_timeout_s if query_timeout_s is not None else settings.overpass_query_timeout_s)
        self.amenities = list(amenities) if amenities else settings.amenities
        self.user_agent = user_agent or settings.overpass_user_agent
        self.radius_min_m, self.radius_max_m = radius_bounds or (
            settings.poi_radius_min_m,
            settings.poi_radius_max_m,
        )
        self.max_results = int(max_results or settings.poi_max_results)
        # Injected client (tests / shared pool). Otherwise one client per fetch.
        self._client = client

    # ──────────────────────────────────────────────────────────
    # Validation + query
    # ──────────────────────────────────────────────────────────

    def validate(self, lat: Any, lng: Any, radius: Any) -> Tuple[float, float, float]:
        lat_f = _as_number("lat", lat)
        lng_f = _as_number("lng", lng)
        radius_f = _as_number("radius", radius)

        if lat_f < -90 or lat_f > 90:
            raise ValidationError("Latitude must be between -90 and 90")
        if lng_f < -180 or lng_f > 180:
            raise ValidationError("Longitude must be between -180 and 180")
        if radius_f < self.radius_min_m or radius_f > self.radius_max_m:
            raise ValidationError(
                f"Radius must be between {_fmt_num(self.radius_min_m)} and "
                f"{_fmt_num(self.radius_max_m)} meters"
            )
        return lat_f, lng_f, radius_f

    def build_query(self, lat: float, lng: float, radius: float) -> str:
        around = f"(around:{_fmt_num(radius)},{_fmt_num(lat)},{_fmt_num(lng)})"

        parts: List[str] = []
        for amenity in self.amenities:
            f = f'["amenity"="{amenity}"]'
            parts.append(f"node{f}{around};")
            parts.append(f"way{f}{around};")
            parts.append(f"relation{f}{around};")

        return (
            f"[out:json][timeout:{self.query_timeout_s}];"
            f"("
            f"{''.join(parts)}"
            f");"
            f"out center {self.max_results};"
        )

    # ──────────────────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────────────────

    def _post(self, ql: str) -> httpx.Response:
        headers = {"Content-Type": "text/plain", "User-Agent": self.user_agent}
        body = ql.encode("utf-8")
        if self._client is not None:
            return self._client.post(self.url, content=body, headers=headers, timeout=self.timeout_s)
        with httpx.Client(timeout=self.timeout_s) as client:
            return client.post(self.url, content=body, headers=headers)

    def fetch(self, lat: Any, lng: Any, radius: Any) -> List[Dict[str, Any]]:
        lat_f, lng_f, radius_f = self.validate(lat, lng, radius)
        ql = self.build_query(lat_f, lng_f, radius_f)
        logger.debug("overpass_query ql=%s", ql)

        try:
            resp = self._post(ql)
        except httpx.TimeoutException as exc:
            logger.error("overpass_timeout lat=%s lng=%s radius=%s", lat_f, lng_f, radius_f)
            raise UpstreamTimeoutError("Overpass request timed out") from exc
        except httpx.TransportError as exc:
            logger.error("overpass_transport_error err=%r", exc)
            raise UpstreamError(f"Overpass request failed: {exc.__class__.__name__}") from exc

        if not resp.is_success:
            text = (resp.text or "")[:_BODY_LOG_CHARS]
            logger.error("overpass_http_error status=%d body=%s", resp.status_code, text)
            raise UpstreamError(
                f"Overpass API error: HTTP {resp.status_code}",
                status=resp.status_code,
                body=text,
            )

        try:
            data = orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            logger.error("overpass_bad_json body=%s", (resp.text or "")[:_BODY_LOG_CHARS])
            raise UpstreamError("Invalid response format from Overpass API", status=resp.status_code) from exc

        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            raise UpstreamError("Invalid response format from Overpass API", status=resp.status_code)

        self._check_remark(data.get("remark"))

        logger.info("overpass_fetch elements=%d lat=%s lng=%s radius=%s", len(elements), lat_f, lng_f, radius_f)
        return elements

    @staticmethod
    def _check_remark(remark: Optional[str]) -> None:
        # Overpass reports evaluation failures with HTTP 200 and a remark.
        if not remark or "runtime error" not in remark.lower():
            return
        logger.error("overpass_runtime_error remark=%s", remark[:_BODY_LOG_CHARS])
        if "timed out" in remark.lower():
            raise UpstreamTimeoutError("Overpass query evaluation timed out")
        raise UpstreamError(f"Overpass runtime error: {remark[:200]}", status=200, body=remark)

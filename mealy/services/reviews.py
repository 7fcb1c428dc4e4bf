from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from mealy.core.contracts import ReviewRow
from mealy.core.errors import StoreError
from mealy.core.settings import settings

logger = logging.getLogger(__name__)


def _chunked(lst: Sequence[str], chunk_size: int) -> List[Sequence[str]]:
    if chunk_size <= 0:
        return [lst]
    return [lst[i : i + chunk_size] for i in range(0, len(lst), chunk_size)]


def _dedup(ids: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for i in ids:
        if i and i not in seen:
            seen.add(i)
            out.append(i)
    return out


def _to_rows(raw: Iterable[dict[str, Any]]) -> List[ReviewRow]:
    out: List[ReviewRow] = []
    for r in raw:
        try:
            out.append(ReviewRow.model_validate(r))
        except PydanticValidationError as e:
            logger.warning("[reviews] skipping malformed row id=%s err=%s", r.get("restaurant_id"), e.errors()[:1])
    return out


class ReviewSource(ABC):
    """Read-only access to review rows owned by the web application."""

    @abstractmethod
    def fetch_reviews(self, poi_ids: Sequence[str]) -> List[ReviewRow]:
        ...


# ──────────────────────────────────────────────────────────────
# Supabase (production)
# ──────────────────────────────────────────────────────────────

def _postgrest_in(values: Sequence[str]) -> str:
    quoted = []
    for v in values:
        s = str(v).replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{s}"')
    return f"in.({','.join(quoted)})"


class SupaReviewRepo(ReviewSource):
    """
    Minimal Supabase REST reader for the `reviews` table.

    Uses service role key (bypasses RLS).
    """

    def __init__(self, *, client: httpx.Client | None = None) -> None:
        if not settings.supa_url or not settings.supa_service_role_key:
            raise RuntimeError("Supabase not configured (SUPA_URL / SUPA_SERVICE_ROLE_KEY)")
        self.base = settings.supa_url.rstrip("/")
        self.key = settings.supa_service_role_key
        self.table = settings.supa_reviews_table
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Accept": "application/json",
        }

    def _get(self, client: httpx.Client, url: str, params: list[tuple[str, str]]) -> list[dict[str, Any]]:
        try:
            resp = client.get(url, headers=self._headers(), params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            body = (e.response.text or "")[:800]
            raise StoreError(f"supa_reviews_failed status={e.response.status_code} body={body}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise StoreError(f"supa_reviews_failed err={e!r}") from e

    def fetch_reviews(self, poi_ids: Sequence[str]) -> List[ReviewRow]:
        ids = _dedup(poi_ids)
        if not ids:
            return []

        url = f"{self.base}/rest/v1/{self.table}"
        select = "restaurant_id,restaurant_name,rating,created_at"

        raw: list[dict[str, Any]] = []

        def _pull(client: httpx.Client) -> None:
            # Chunking keeps the `in.(...)` filter under URL length limits.
            for chunk in _chunked(ids, int(settings.supa_ids_chunk)):
                params = [("select", select), ("restaurant_id", _postgrest_in(chunk))]
                raw.extend(self._get(client, url, params))

        if self._client is not None:
            _pull(self._client)
        else:
            with httpx.Client(timeout=float(settings.supa_timeout_s)) as client:
                _pull(client)

        return _to_rows(raw)


# ──────────────────────────────────────────────────────────────
# SQLite (local dev)
# ──────────────────────────────────────────────────────────────

class SqliteReviewRepo(ReviewSource):
    # SQLite's default bound-parameter ceiling is 999
    _CHUNK = 500

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def fetch_reviews(self, poi_ids: Sequence[str]) -> List[ReviewRow]:
        ids = _dedup(poi_ids)
        if not ids:
            return []

        raw: list[dict[str, Any]] = []
        try:
            for chunk in _chunked(ids, self._CHUNK):
                placeholders = ",".join("?" for _ in chunk)
                sql = f"""
                SELECT restaurant_id, restaurant_name, rating, created_at
                FROM reviews
                WHERE restaurant_id IN ({placeholders})
                ORDER BY id
                """
                for (rid, rname, rating, created_at) in self.conn.execute(sql, list(chunk)).fetchall():
                    raw.append(
                        {
                            "restaurant_id": rid,
                            "restaurant_name": rname,
                            "rating": rating,
                            "created_at": created_at,
                        }
                    )
        except sqlite3.Error as e:
            raise StoreError(f"review query failed: {e}") from e

        return _to_rows(raw)


def create_review_source(*, backend: str | None = None, sqlite_conn: sqlite3.Connection | None = None) -> ReviewSource:
    backend = (backend or settings.reviews_backend).strip().lower()
    if backend == "supabase":
        return SupaReviewRepo()
    if backend == "sqlite":
        if sqlite_conn is None:
            raise RuntimeError("SQLite review source needs a connection")
        return SqliteReviewRepo(sqlite_conn)
    raise RuntimeError(f"unknown REVIEWS_BACKEND: {backend!r}")

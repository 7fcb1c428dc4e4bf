from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from mealy.core.contracts import RankedEntry, RatingSummary
from mealy.services.reviews import ReviewSource

logger = logging.getLogger(__name__)


@dataclass
class _Tally:
    total: int = 0
    count: int = 0
    name: Optional[str] = None


class RatingAggregator:
    """
    Per-POI mean rating and review count, folded from review rows on demand.

    Nothing is cached: ratings move faster than POI metadata.
    """

    def __init__(self, reviews: ReviewSource):
        self.reviews = reviews

    def _tally(self, poi_ids: Sequence[str]) -> Dict[str, _Tally]:
        wanted = set(poi_ids)
        rows = self.reviews.fetch_reviews(list(poi_ids))

        out: Dict[str, _Tally] = {}
        for r in rows:
            if r.restaurant_id not in wanted:
                continue
            t = out.setdefault(r.restaurant_id, _Tally())
            t.total += int(r.rating)
            t.count += 1
            if t.name is None and r.restaurant_name:
                t.name = r.restaurant_name
        return out

    def aggregate(self, poi_ids: Sequence[str]) -> Dict[str, RatingSummary]:
        """
        Map poi_id -> RatingSummary. POIs with no reviews are absent from the
        result; callers show "no rating yet" for them.
        """
        if not poi_ids:
            return {}

        tallies = self._tally(poi_ids)
        logger.info("[ratings] aggregate ids=%d rated=%d", len(set(poi_ids)), len(tallies))
        return {
            pid: RatingSummary(poi_id=pid, average_rating=t.total / t.count, review_count=t.count)
            for pid, t in tallies.items()
        }

    def top_rated(self, poi_ids: Sequence[str], limit: int = 3) -> List[RankedEntry]:
        """
        Best-rated POIs among `poi_ids`.

        Order: average rating desc, then review count desc, then position in
        `poi_ids`.
        """
        if not poi_ids or limit <= 0:
            return []

        position: Dict[str, int] = {}
        for i, pid in enumerate(poi_ids):
            position.setdefault(pid, i)

        tallies = self._tally(poi_ids)
        ranked = sorted(
            tallies.items(),
            key=lambda kv: (-(kv[1].total / kv[1].count), -kv[1].count, position[kv[0]]),
        )

        return [
            RankedEntry(id=pid, name=t.name, average_rating=t.total / t.count, review_count=t.count)
            for pid, t in ranked[:limit]
        ]

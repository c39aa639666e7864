"""Walkability scoring: the scorer contract and a distance-curve default policy."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)


class ScoreFieldMissing(ValueError):
    pass


class ScoringAdapter(Protocol):
    def __call__(
        self,
        nearby_locations: Mapping[str, Sequence[Any]],
        routes_to_points: Mapping[str, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class DistanceKnot:
    """A breakpoint on a piecewise-linear distance curve."""
    meters: float
    score: float


# Full credit within a 5-minute walk, nothing past the search radius.
WALK_DISTANCE_KNOTS: Tuple[DistanceKnot, ...] = (
    DistanceKnot(0, 1.0),
    DistanceKnot(400, 1.0),
    DistanceKnot(800, 0.8),
    DistanceKnot(1200, 0.55),
    DistanceKnot(1600, 0.3),
    DistanceKnot(2400, 0.0),
)

CATEGORY_WEIGHTS: Dict[str, float] = {
    "grocery_store": 0.30,
    "park": 0.20,
    "bus_stop": 0.20,
    "school": 0.15,
    "shopping_mall": 0.15,
}


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def apply_piecewise(knots: Sequence[DistanceKnot], x: float) -> float:
    """Evaluate a piecewise-linear curve at ``x``, clamped to the end knots."""
    if not knots:
        raise ValueError("knots must not be empty")
    if x <= knots[0].meters:
        return knots[0].score
    if x >= knots[-1].meters:
        return knots[-1].score
    for i in range(1, len(knots)):
        if x <= knots[i].meters:
            k0 = knots[i - 1]
            k1 = knots[i]
            dx = k1.meters - k0.meters
            if dx == 0:
                return k1.score
            t = (x - k0.meters) / dx
            return k0.score + t * (k1.score - k0.score)
    return knots[-1].score


def nearest_walk_meters(distances: Sequence[Any]) -> Optional[float]:
    best: Optional[float] = None
    for d in distances:
        if d is None or not getattr(d, "ok", False):
            continue
        meters = getattr(d, "distance_meters", None)
        if meters is None:
            continue
        if best is None or meters < best:
            best = float(meters)
    return best


class WalkabilityScorer:
    """Default scoring policy.

    Each category contributes weight * curve(nearest walking distance). A
    category with no routable candidate contributes nothing. Weights are
    normalized over the categories that were queried, so total stays in
    [0, 1] whatever category subset a run uses.
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        knots: Sequence[DistanceKnot] = WALK_DISTANCE_KNOTS,
        default_weight: float = 0.1,
    ) -> None:
        self.weights = dict(CATEGORY_WEIGHTS if weights is None else weights)
        self.knots = tuple(knots)
        self.default_weight = default_weight

    def __call__(
        self,
        nearby_locations: Mapping[str, Sequence[Any]],
        routes_to_points: Mapping[str, Mapping[str, Any]],
    ) -> Dict[str, Any]:
        categories: Dict[str, Dict[str, Any]] = {}
        weight_sum = 0.0
        total = 0.0
        for category, route_info in routes_to_points.items():
            weight = float(self.weights.get(category, self.default_weight))
            weight_sum += weight
            meters = nearest_walk_meters(route_info.get("distancesAlignedByIndex") or [])
            proximity = 0.0 if meters is None else apply_piecewise(self.knots, meters)
            total += weight * proximity
            categories[category] = {
                "count": len(nearby_locations.get(category) or []),
                "nearest_meters": meters,
                "proximity": proximity,
                "weight": weight,
            }
        if weight_sum > 0:
            total /= weight_sum
        return {"total": total, "categories": categories}


def extract_total(scores: Any) -> float:
    total = scores.get("total") if isinstance(scores, Mapping) else None
    if isinstance(total, bool) or not isinstance(total, (int, float)) or math.isnan(total):
        raise ScoreFieldMissing(f"Score record has no numeric total: {total!r}")
    return float(total)


def extract_weight(scores: Any) -> float:
    """Clamped score total; a missing or non-numeric total counts as 0."""
    try:
        return clamp01(extract_total(scores))
    except ScoreFieldMissing as exc:
        logger.debug("%s; using weight 0", exc)
        return 0.0


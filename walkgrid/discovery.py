"""Per-origin amenity discovery: nearby places, walking distances, dedup, score."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from . import config
from .geo import GridPoint
from .places_client import Candidate, PlacesClient
from .routes_client import DistanceResult, RoutesClient
from .scoring import ScoringAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryBundle:
    category: str
    candidates: Tuple[Candidate, ...]
    distances: Tuple[DistanceResult, ...]

    def __post_init__(self) -> None:
        if len(self.candidates) != len(self.distances):
            raise ValueError(
                f"{self.category}: {len(self.candidates)} candidates but "
                f"{len(self.distances)} distances"
            )


@dataclass
class OriginResult:
    nearby_locations: Dict[str, List[Candidate]] = field(default_factory=dict)
    routes_to_points: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    scores: Dict[str, Any] = field(default_factory=dict)

    def add_bundle(self, bundle: CategoryBundle) -> None:
        self.nearby_locations[bundle.category] = list(bundle.candidates)
        self.routes_to_points[bundle.category] = {
            "candidatesCount": len(bundle.candidates),
            "distancesAlignedByIndex": list(bundle.distances),
        }


def normalize_name(name: str) -> str:
    return (name or "").strip().casefold()


def dedupe_by_name(
    candidates: Sequence[Candidate], distances: Sequence[DistanceResult]
) -> Tuple[List[Candidate], List[DistanceResult]]:
    """Keep the first candidate per normalized display name, with its distance.

    Candidates without a name are dropped along with their distance entry.
    """
    if len(candidates) != len(distances):
        raise ValueError(
            f"Cannot dedupe {len(candidates)} candidates against {len(distances)} distances"
        )
    seen = set()
    kept_candidates: List[Candidate] = []
    kept_distances: List[DistanceResult] = []
    for candidate, distance in zip(candidates, distances):
        key = normalize_name(candidate.display_name)
        if not key or key in seen:
            continue
        seen.add(key)
        kept_candidates.append(candidate)
        kept_distances.append(distance)
    return kept_candidates, kept_distances


class AmenityDiscoverer:
    def __init__(
        self,
        places_client: PlacesClient,
        routes_client: RoutesClient,
        scorer: ScoringAdapter,
        categories: Sequence[str] = config.AMENITY_CATEGORIES,
    ) -> None:
        self.places = places_client
        self.routes = routes_client
        self.scorer = scorer
        self.categories = tuple(categories)

    def discover_category(self, origin: GridPoint, category: str) -> CategoryBundle:
        candidates = self.places.search_nearby(origin, category)
        distances = self.routes.compute_walking_distances(origin, candidates)
        kept, kept_distances = dedupe_by_name(candidates, distances)
        if len(kept) != len(candidates):
            logger.debug(
                "%s at (%s, %s): dropped %s duplicate/unnamed candidates",
                category,
                origin.lat,
                origin.lng,
                len(candidates) - len(kept),
            )
        return CategoryBundle(
            category=category, candidates=tuple(kept), distances=tuple(kept_distances)
        )

    def discover(self, origin: GridPoint) -> OriginResult:
        """Discover every category for ``origin`` in order, then score.

        Any category failure propagates; an origin never gets a partial result.
        """
        result = OriginResult()
        for category in self.categories:
            result.add_bundle(self.discover_category(origin, category))
        result.scores = self.scorer(result.nearby_locations, result.routes_to_points)
        return result

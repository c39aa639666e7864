"""Routes API route-matrix client with caching and response parsing."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from . import config
from .cache import Cache, make_request_cache_key
from .geo import GridPoint
from .http import HttpClient, RequestMetrics, RetryPolicy, raise_for_upstream
from .places_client import Candidate


@dataclass(frozen=True)
class DistanceResult:
    ok: bool
    distance_meters: Optional[int] = None
    duration: Optional[str] = None


NO_ROUTE = DistanceResult(ok=False)


class RoutesClient:
    def __init__(
        self,
        http_client: HttpClient,
        cache: Optional[Cache] = None,
        no_cache: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        field_mask: str = config.ROUTES_MATRIX_FIELD_MASK,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.cache = cache
        self.no_cache = no_cache or cache is None
        self.retry_policy = retry_policy
        self.field_mask = field_mask
        self.metrics = metrics

    def compute_walking_distances(
        self, origin: GridPoint, candidates: Sequence[Candidate]
    ) -> List[DistanceResult]:
        """Walking distance from ``origin`` to each candidate, index-aligned."""
        if not candidates:
            return []

        body = build_route_matrix_body(origin, candidates)
        key = make_request_cache_key(config.ROUTES_MATRIX_URL, self.field_mask, body)
        text: Optional[str] = None
        if not self.no_cache:
            text = self.cache.get_route_matrix_cache(key)
            if text is not None and self.metrics is not None:
                self.metrics.inc_cache_hit("routes")

        if text is None:
            if self.metrics is not None:
                self.metrics.inc_network("routes")
            resp = self.http.send(
                config.ROUTES_MATRIX_URL, body, self.field_mask, retry_policy=self.retry_policy
            )
            raise_for_upstream(resp, "Route matrix")
            text = resp.text
            if not self.no_cache:
                self.cache.set_route_matrix_cache(key, len(candidates), text)

        elements = parse_route_matrix_elements(text)
        return align_route_matrix(elements, len(candidates))


def build_route_matrix_body(origin: GridPoint, candidates: Sequence[Candidate]) -> Dict[str, Any]:
    return {
        "origins": [
            {
                "waypoint": {
                    "location": {"latLng": {"latitude": origin.lat, "longitude": origin.lng}}
                }
            }
        ],
        "destinations": [
            {
                "waypoint": {
                    "location": {
                        "latLng": {"latitude": c.latitude, "longitude": c.longitude}
                    }
                }
            }
            for c in candidates
        ],
        "travelMode": config.WALK_MODE,
    }


def parse_route_matrix_elements(text: str) -> List[Dict[str, Any]]:
    """Elements of a route-matrix payload, either a JSON array or NDJSON.

    The whole body is tried as one document first; only if that fails is it
    read as one JSON object per non-empty line.
    """
    try:
        doc = json.loads(text)
    except ValueError:
        return [json.loads(line) for line in text.strip().splitlines() if line.strip()]
    if isinstance(doc, list):
        return doc
    if isinstance(doc, dict):
        # A single-destination stream is one line, which parses as one document.
        return [doc]
    return []


def align_route_matrix(elements: Sequence[Dict[str, Any]], count: int) -> List[DistanceResult]:
    distances: List[DistanceResult] = [NO_ROUTE] * count
    for el in elements:
        if not isinstance(el, dict):
            continue
        idx = el.get("destinationIndex")
        if isinstance(idx, bool) or not isinstance(idx, int):
            continue
        if idx < 0 or idx >= count:
            continue
        if el.get("condition") != config.ROUTE_EXISTS:
            distances[idx] = NO_ROUTE
            continue
        # Zero values are omitted from the JSON, so a route with no distance is 0 m.
        distances[idx] = DistanceResult(
            ok=True,
            distance_meters=el.get("distanceMeters", 0),
            duration=el.get("duration", "0s"),
        )
    return distances


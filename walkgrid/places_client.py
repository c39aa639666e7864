"""Places API client with caching and response parsing."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .cache import Cache, make_request_cache_key
from .geo import GridPoint
from .http import HttpClient, RequestMetrics, RetryPolicy, raise_for_upstream


@dataclass(frozen=True)
class Candidate:
    id: str
    display_name: str
    latitude: Optional[float]
    longitude: Optional[float]
    types: Tuple[str, ...] = field(default_factory=tuple)


class PlacesClient:
    def __init__(
        self,
        http_client: HttpClient,
        cache: Optional[Cache] = None,
        no_cache: bool = False,
        radius_m: int = config.PLACES_SEARCH_RADIUS_M,
        max_results: int = config.PLACES_MAX_RESULTS_PER_CATEGORY,
        retry_policy: Optional[RetryPolicy] = None,
        field_mask: str = config.PLACES_FIELD_MASK,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.http = http_client
        self.cache = cache
        self.no_cache = no_cache or cache is None
        self.radius_m = radius_m
        self.max_results = max_results
        self.retry_policy = retry_policy
        self.field_mask = field_mask
        self.metrics = metrics

    def search_nearby(self, origin: GridPoint, category: str) -> List[Candidate]:
        """Nearest places of one category around ``origin``, closest first."""
        body = build_nearby_search_body(origin, category, self.radius_m, self.max_results)
        key = make_request_cache_key(config.PLACES_NEARBY_SEARCH_URL, self.field_mask, body)
        if not self.no_cache:
            cached = self.cache.get_search_cache(key)
            if cached is not None:
                if self.metrics is not None:
                    self.metrics.inc_cache_hit("places")
                return parse_places_response(cached)

        if self.metrics is not None:
            self.metrics.inc_network("places")
        resp = self.http.send(
            config.PLACES_NEARBY_SEARCH_URL, body, self.field_mask, retry_policy=self.retry_policy
        )
        raise_for_upstream(resp, f"Places {category}")
        response = resp.json()
        if not self.no_cache:
            self.cache.set_search_cache(key, category, response)
        return parse_places_response(response)


def build_nearby_search_body(
    origin: GridPoint,
    category: str,
    radius_m: int = config.PLACES_SEARCH_RADIUS_M,
    max_results: int = config.PLACES_MAX_RESULTS_PER_CATEGORY,
) -> Dict[str, Any]:
    return {
        "includedTypes": [category],
        "maxResultCount": int(max_results),
        "locationRestriction": {
            "circle": {
                "center": {"latitude": origin.lat, "longitude": origin.lng},
                "radius": float(radius_m),
            }
        },
        "rankPreference": config.PLACES_RANK_PREFERENCE,
    }


# Adapter/mapper for Places response fields

def parse_places_response(response: Dict[str, Any]) -> List[Candidate]:
    places = response.get("places") or []
    parsed: List[Candidate] = []
    for p in places:
        display = p.get("displayName")
        if isinstance(display, dict):
            name = display.get("text") or ""
        else:
            name = display or ""
        location = p.get("location") or {}
        parsed.append(
            Candidate(
                id=p.get("id") or p.get("placeId") or "",
                display_name=name,
                latitude=location.get("latitude"),
                longitude=location.get("longitude"),
                types=tuple(p.get("types") or ()),
            )
        )
    return parsed

"""Project configuration.

API request shapes and run defaults are centralized here. A run is described
by a ``PipelineConfig``; ``load_pipeline_config`` builds one from an optional
walkgrid_config.json, falling back to the defaults below.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .geo import BoundingBox
from .http import RetryPolicy

_REPO_ROOT = Path(__file__).resolve().parent.parent


class ConfigError(ValueError):
    pass


# --- API endpoints ---

PLACES_NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"
ROUTES_MATRIX_URL = "https://routes.googleapis.com/distanceMatrix/v2:computeRouteMatrix"

# --- Field masks ---

PLACES_FIELD_MASK = "places.id,places.displayName,places.location,places.types"
ROUTES_MATRIX_FIELD_MASK = (
    "originIndex,destinationIndex,status,condition,distanceMeters,duration"
)

# --- Places API request shape ---

# Ordered: the order here is the order of categories in every OriginResult.
AMENITY_CATEGORIES: Tuple[str, ...] = (
    "grocery_store",
    "park",
    "bus_stop",
    "school",
    "shopping_mall",
)
# A little over 1.5 miles; street routing makes walks longer than the crow flies.
PLACES_SEARCH_RADIUS_M = 2400
PLACES_MAX_RESULTS_PER_CATEGORY = 8
PLACES_RANK_PREFERENCE = "DISTANCE"

# --- Routes ---

WALK_MODE = "WALK"
ROUTE_EXISTS = "ROUTE_EXISTS"

# --- Grid / run defaults ---

DEFAULT_BOUNDS = BoundingBox(north=37.83, south=37.67, east=-122.35, west=-122.525)
DEFAULT_STEP_DEG = 0.003
TRIGGER_STEP_DEG = 0.05
MAX_POINTS = 4000
FLUSH_EVERY = 25
FLUSH_PAUSE_SECONDS = 0.3

# --- HTTP ---

API_KEY_ENV = "GOOGLE_MAPS_API_KEY"
HTTP_TIMEOUT_SECONDS = 20
HTTP_RETRY_MAX = 6
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 30.0

# --- Cache and outputs ---

CACHE_DB_PATH = "cache.db"
OUTPUT_PATH = "public/heatmap.json"
PROGRESS_LOG_EVERY = 50
PROGRESS_WRITE_INTERVAL_SECONDS = 5.0


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=HTTP_RETRY_MAX,
        base_delay=HTTP_BACKOFF_BASE,
        max_delay=HTTP_BACKOFF_MAX,
    )


@dataclass(frozen=True)
class PipelineConfig:
    """Everything one pipeline run depends on.

    bounds / step_deg fix the grid, and so the meaning of a checkpoint index:
    resuming a checkpoint with different values realigns onto the wrong points.
    max_points caps the persisted point count (pre-existing points included).
    flush_every is the number of new points between partial checkpoint writes;
    after each one the run pauses flush_pause_seconds to spare upstream quota.
    retry_policy bounds how long a rate-limited request keeps retrying.
    """

    bounds: BoundingBox = DEFAULT_BOUNDS
    step_deg: float = DEFAULT_STEP_DEG
    max_points: int = MAX_POINTS
    flush_every: int = FLUSH_EVERY
    flush_pause_seconds: float = FLUSH_PAUSE_SECONDS
    retry_policy: RetryPolicy = field(default_factory=default_retry_policy)
    categories: Tuple[str, ...] = AMENITY_CATEGORIES
    search_radius_m: int = PLACES_SEARCH_RADIUS_M
    max_results_per_category: int = PLACES_MAX_RESULTS_PER_CATEGORY
    output_path: str = OUTPUT_PATH

    def validate(self) -> None:
        try:
            self.bounds.validate()
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        if not (isinstance(self.step_deg, (int, float)) and math.isfinite(self.step_deg)):
            raise ConfigError(f"step_deg must be a finite number, got {self.step_deg!r}")
        if self.step_deg <= 0:
            raise ConfigError(f"step_deg must be positive, got {self.step_deg}")
        if self.max_points < 0:
            raise ConfigError(f"max_points must be >= 0, got {self.max_points}")
        if self.flush_every < 1:
            raise ConfigError(f"flush_every must be >= 1, got {self.flush_every}")
        if self.flush_pause_seconds < 0:
            raise ConfigError("flush_pause_seconds must be >= 0")
        if self.retry_policy.max_retries < 0:
            raise ConfigError("retry_policy.max_retries must be >= 0")
        for name in ("base_delay", "max_delay"):
            delay = getattr(self.retry_policy, name)
            if not math.isfinite(delay) or delay < 0:
                raise ConfigError(f"retry_policy.{name} must be a finite number >= 0, got {delay}")
        if not self.categories:
            raise ConfigError("At least one amenity category is required")
        if len(set(self.categories)) != len(self.categories):
            raise ConfigError(f"Duplicate amenity categories: {list(self.categories)}")

    def with_overrides(self, **overrides: Any) -> "PipelineConfig":
        clean = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **clean)


def load_pipeline_config(path: Optional[str] = None) -> PipelineConfig:
    """Load a run configuration from a JSON file.

    Returns the defaults when the file does not exist. Unknown keys are
    ignored; malformed values raise ConfigError.
    """
    if path is None:
        path = str(_REPO_ROOT / "walkgrid_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return PipelineConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot read config {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must be a JSON object")

    return config_from_dict(data)


def config_from_dict(data: Dict[str, Any]) -> PipelineConfig:
    overrides: Dict[str, Any] = {}
    try:
        bounds = data.get("bounds")
        if bounds is not None:
            overrides["bounds"] = BoundingBox.from_dict(bounds)

        if data.get("step_deg") is not None:
            overrides["step_deg"] = float(data["step_deg"])
        if data.get("max_points") is not None:
            overrides["max_points"] = int(data["max_points"])
        if data.get("flush_every") is not None:
            overrides["flush_every"] = int(data["flush_every"])
        if data.get("flush_pause_seconds") is not None:
            overrides["flush_pause_seconds"] = float(data["flush_pause_seconds"])
        if data.get("search_radius_m") is not None:
            overrides["search_radius_m"] = int(data["search_radius_m"])
        if data.get("max_results_per_category") is not None:
            overrides["max_results_per_category"] = int(data["max_results_per_category"])
        if data.get("output_path"):
            overrides["output_path"] = str(data["output_path"])

        categories = data.get("categories")
        if categories is not None:
            if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
                raise ConfigError(f"categories must be a list of strings, got {categories!r}")
            overrides["categories"] = tuple(categories)

        retry = data.get("retry_policy") or {}
        if retry:
            base = default_retry_policy()
            overrides["retry_policy"] = RetryPolicy(
                max_retries=int(retry.get("max_retries", base.max_retries)),
                base_delay=float(retry.get("base_delay", base.base_delay)),
                max_delay=float(retry.get("max_delay", base.max_delay)),
            )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = PipelineConfig(**overrides)
    cfg.validate()
    return cfg

"""Pipeline orchestration: walk the grid, score each origin, checkpoint."""
from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import config
from .cache import Cache
from .checkpoint import CheckpointStore, JsonFileCheckpointStore, ScoredPoint, build_meta
from .config import ConfigError, PipelineConfig
from .discovery import AmenityDiscoverer
from .geo import make_grid
from .http import HttpClient, RequestMetrics
from .places_client import PlacesClient
from .reporting import ProgressReporter
from .routes_client import RoutesClient
from .scoring import ScoringAdapter, WalkabilityScorer, extract_weight

logger = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    SCORING = "scoring"
    FLUSHING = "flushing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class PipelineResult:
    count: int
    processed: int
    partial: bool
    state: PipelineState


class PipelineOrchestrator:
    def __init__(
        self,
        cfg: PipelineConfig,
        discoverer: AmenityDiscoverer,
        store: CheckpointStore,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        cfg.validate()
        self.config = cfg
        self.discoverer = discoverer
        self.store = store
        self.sleep = sleep
        self.progress = progress
        self.state = PipelineState.IDLE

    def _set_state(self, state: PipelineState, total_estimate: Optional[int] = None) -> None:
        self.state = state
        if self.progress is not None:
            self.progress.set_stage(state.value, total_estimate)

    def _flush(self, points: List[ScoredPoint], partial: bool) -> None:
        cfg = self.config
        meta = build_meta(cfg, partial=partial, count=len(points))
        self.store.flush(cfg.output_path, points, meta, partial)
        logger.info(
            "Checkpoint flushed: count=%s partial=%s target=%s",
            len(points),
            partial,
            cfg.output_path,
        )

    def run(self) -> PipelineResult:
        """Resume from the checkpoint and score until the grid or budget runs out.

        Any failure while scoring aborts the run; whatever the last periodic
        flush wrote stays as the checkpoint.
        """
        cfg = self.config
        grid = make_grid(cfg.bounds, cfg.step_deg)

        self._set_state(PipelineState.LOADING)
        points = list(self.store.load(cfg.output_path))
        if len(points) > cfg.max_points:
            logger.warning(
                "Checkpoint holds %s points, above max_points=%s; keeping the first %s",
                len(points),
                cfg.max_points,
                cfg.max_points,
            )
            points = points[: cfg.max_points]

        start = len(points)
        target = min(len(grid), cfg.max_points)
        logger.info(
            "Grid has %s points; resuming at index %s (target %s)", len(grid), start, target
        )

        self._set_state(PipelineState.SCORING, total_estimate=max(0, target - start))
        processed = 0
        idx = start
        try:
            while idx < len(grid) and len(points) < cfg.max_points:
                origin = grid[idx]
                result = self.discoverer.discover(origin)
                points.append(
                    ScoredPoint(lat=origin.lat, lng=origin.lng, weight=extract_weight(result.scores))
                )
                processed += 1
                idx += 1
                if self.progress is not None:
                    self.progress.advance()

                if len(points) % cfg.flush_every == 0:
                    self._set_state(PipelineState.FLUSHING)
                    self._flush(points, partial=True)
                    self.sleep(cfg.flush_pause_seconds)
                    self._set_state(PipelineState.SCORING)
        except Exception:
            self._set_state(PipelineState.ABORTED)
            logger.error(
                "Run aborted at grid index %s after %s new points; checkpoint left as last flushed",
                idx,
                processed,
            )
            raise

        # Stopping on the point budget leaves part of the grid unscored.
        partial = len(points) < len(grid)
        self._flush(points, partial=partial)
        self._set_state(PipelineState.DONE)
        if self.progress is not None:
            self.progress.flush()
        logger.info("Run complete: %s points persisted (%s new)", len(points), processed)
        return PipelineResult(
            count=len(points),
            processed=processed,
            partial=partial,
            state=self.state,
        )


def require_api_key(api_key: Optional[str] = None) -> str:
    key = (api_key if api_key is not None else os.environ.get(config.API_KEY_ENV) or "").strip()
    if not key:
        raise ConfigError(f"Missing {config.API_KEY_ENV} in environment")
    return key


def build_discoverer(
    cfg: PipelineConfig,
    http_client: HttpClient,
    cache: Optional[Cache] = None,
    scorer: Optional[ScoringAdapter] = None,
    metrics: Optional[RequestMetrics] = None,
) -> AmenityDiscoverer:
    places_client = PlacesClient(
        http_client,
        cache,
        radius_m=cfg.search_radius_m,
        max_results=cfg.max_results_per_category,
        retry_policy=cfg.retry_policy,
        metrics=metrics,
    )
    routes_client = RoutesClient(
        http_client,
        cache,
        retry_policy=cfg.retry_policy,
        metrics=metrics,
    )
    return AmenityDiscoverer(
        places_client,
        routes_client,
        scorer or WalkabilityScorer(),
        categories=cfg.categories,
    )


def generate_heatmap(
    cfg: Optional[PipelineConfig] = None,
    api_key: Optional[str] = None,
    store: Optional[CheckpointStore] = None,
    cache_db_path: Optional[str] = config.CACHE_DB_PATH,
    scorer: Optional[ScoringAdapter] = None,
    progress_path: Optional[str] = None,
    metrics: Optional[RequestMetrics] = None,
) -> Dict[str, Any]:
    """Start or resume a run and return ``{"count": n}``.

    Called with no arguments it uses the default bounds at the trigger step
    size and writes to the default checkpoint path.
    """
    if cfg is None:
        cfg = PipelineConfig(step_deg=config.TRIGGER_STEP_DEG)
    cfg.validate()
    key = require_api_key(api_key)
    metrics = metrics or RequestMetrics()

    http_client = HttpClient(
        key,
        timeout=config.HTTP_TIMEOUT_SECONDS,
        retry_policy=cfg.retry_policy,
        metrics=metrics,
    )
    cache = Cache(cache_db_path) if cache_db_path else None
    try:
        discoverer = build_discoverer(cfg, http_client, cache, scorer=scorer, metrics=metrics)
        progress = ProgressReporter(
            progress_path,
            log_every=config.PROGRESS_LOG_EVERY,
            write_interval_seconds=config.PROGRESS_WRITE_INTERVAL_SECONDS,
            logger=logger,
            counters=metrics,
        )
        orchestrator = PipelineOrchestrator(
            cfg,
            discoverer,
            store or JsonFileCheckpointStore(),
            progress=progress,
        )
        result = orchestrator.run()
    finally:
        http_client.close()
        if cache is not None:
            cache.close()

    logger.info(
        "Requests: places=%s routes=%s cache_hits_places=%s cache_hits_routes=%s rate_limit_waits=%s",
        metrics.network_places,
        metrics.network_routes,
        metrics.cache_hits_places,
        metrics.cache_hits_routes,
        metrics.rate_limit_waits,
    )
    return {"count": result.count}

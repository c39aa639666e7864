"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv as _load_dotenv

from walkgrid import config
from walkgrid.checkpoint import CheckpointStore, JsonFileCheckpointStore, SqliteCheckpointStore
from walkgrid.config import ConfigError, PipelineConfig, load_pipeline_config
from walkgrid.geo import grid_shape
from walkgrid.http import RequestMetrics
from walkgrid.pipeline import generate_heatmap


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Score walkability over a lat/lng grid")
    parser.add_argument("--preflight", action="store_true", help="Run offline checks only")
    parser.add_argument("--config", type=str, default=None, help="Path to walkgrid_config.json")
    parser.add_argument("--out", type=str, default=None, help="Checkpoint path (or sqlite target name)")
    parser.add_argument("--step", type=float, default=None, help="Grid step in degrees")
    parser.add_argument("--max-points", type=int, default=None)
    parser.add_argument("--flush-every", type=int, default=None)
    parser.add_argument(
        "--store",
        choices=["json", "sqlite"],
        default="json",
        help="Checkpoint backend (default: json file)",
    )
    parser.add_argument(
        "--store-db",
        type=str,
        default="checkpoints.db",
        help="SQLite database for --store sqlite (default: checkpoints.db)",
    )
    parser.add_argument("--cache-path", type=str, default=config.CACHE_DB_PATH)
    parser.add_argument("--no-cache", action="store_true", help="Do not read or write the response cache")
    parser.add_argument("--progress-path", type=str, default=None, help="Write progress JSON here")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    cfg = load_pipeline_config(args.config)
    cfg = cfg.with_overrides(
        step_deg=args.step,
        max_points=args.max_points,
        flush_every=args.flush_every,
        output_path=args.out,
    )
    cfg.validate()
    return cfg


def run_preflight(api_key: Optional[str], cfg: PipelineConfig) -> int:
    ok = True

    if api_key:
        print("API key: OK")
    else:
        print(f"API key: MISSING ({config.API_KEY_ENV})")
        ok = False

    try:
        cfg.validate()
        rows, cols = grid_shape(cfg.bounds, cfg.step_deg)
        print(f"Grid: OK ({rows} rows x {cols} cols = {rows * cols} points)")
    except ValueError as exc:
        print(f"Grid: FAIL ({exc})")
        ok = False

    print(
        "Run caps: max_points={max_points}, flush_every={flush_every}, max_retries={retries}".format(
            max_points=cfg.max_points,
            flush_every=cfg.flush_every,
            retries=cfg.retry_policy.max_retries,
        )
    )
    print(f"Categories: {', '.join(cfg.categories)}")
    print(f"Checkpoint: {cfg.output_path}")

    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


def main(argv: Optional[list] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        cfg = build_config(args)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 1

    api_key = (os.environ.get(config.API_KEY_ENV) or "").strip()
    if args.preflight:
        return run_preflight(api_key, cfg)

    if not api_key:
        print(f"Missing {config.API_KEY_ENV} in environment", file=sys.stderr)
        return 1

    store: CheckpointStore
    sqlite_store: Optional[SqliteCheckpointStore] = None
    if args.store == "sqlite":
        sqlite_store = SqliteCheckpointStore(args.store_db)
        store = sqlite_store
    else:
        store = JsonFileCheckpointStore()

    metrics = RequestMetrics()
    try:
        result = generate_heatmap(
            cfg,
            api_key=api_key,
            store=store,
            cache_db_path=None if args.no_cache else args.cache_path,
            progress_path=args.progress_path,
            metrics=metrics,
        )
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if sqlite_store is not None:
            sqlite_store.close()

    print(f"Persisted {result['count']} points to {cfg.output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

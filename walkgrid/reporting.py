"""Output helpers: atomic file writes and run progress."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Protocol, TextIO, Tuple


class RequestCounters(Protocol):
    places_count: int
    routes_count: int


def ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    ensure_parent_dir(path)
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


class ProgressReporter:
    def __init__(
        self,
        output_path: Optional[str],
        log_every: int = 50,
        write_interval_seconds: float = 5.0,
        logger: Optional[logging.Logger] = None,
        counters: Optional[RequestCounters] = None,
    ) -> None:
        self.output_path = output_path
        self.log_every = max(1, int(log_every)) if log_every else 0
        self.write_interval_seconds = float(write_interval_seconds)
        self.logger = logger or logging.getLogger(__name__)
        self._counters = counters
        self.stage = "init"
        self.processed_count = 0
        self.total_estimate: Optional[int] = None
        self._next_log = self.log_every if self.log_every else 0
        self._last_write = 0.0

    def set_stage(self, stage: str, total_estimate: Optional[int] = None) -> None:
        self.stage = stage
        if total_estimate is not None:
            self.total_estimate = total_estimate
        self._write_if_due(force=True)

    def advance(self, count: int = 1) -> None:
        if count <= 0:
            return
        self.processed_count += count
        places_requests, routes_requests = self._get_counts()
        if self.log_every and self.processed_count >= self._next_log:
            if self.total_estimate is None:
                self.logger.info(
                    "Progress: stage=%s processed=%s places_requests=%s routes_requests=%s",
                    self.stage,
                    self.processed_count,
                    places_requests,
                    routes_requests,
                )
            else:
                self.logger.info(
                    "Progress: stage=%s processed=%s/%s places_requests=%s routes_requests=%s",
                    self.stage,
                    self.processed_count,
                    self.total_estimate,
                    places_requests,
                    routes_requests,
                )
            self._next_log += self.log_every
        self._write_if_due()

    def flush(self) -> None:
        self._write_if_due(force=True)

    def _get_counts(self) -> Tuple[int, int]:
        if self._counters is None:
            return (0, 0)
        return (
            int(getattr(self._counters, "places_count", 0)),
            int(getattr(self._counters, "routes_count", 0)),
        )

    def _write_if_due(self, force: bool = False) -> None:
        if not self.output_path:
            return
        now = time.monotonic()
        if not force and (now - self._last_write) < self.write_interval_seconds:
            return
        places_requests, routes_requests = self._get_counts()
        payload = {
            "stage": self.stage,
            "processed_count": self.processed_count,
            "total_estimate": self.total_estimate,
            "places_requests": places_requests,
            "routes_requests": routes_requests,
            "timestamp": utc_now_iso(),
        }
        write_json_object(self.output_path, payload)
        self._last_write = now

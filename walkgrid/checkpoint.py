"""Checkpoint stores for scored grid points.

Every flush rewrites the whole document ({meta, points}); consumers such as
the heat-map front end always read it in full. A checkpoint target has one
writer at a time: two runs against the same target race and are unsupported.
"""
from __future__ import annotations

import json
import logging
import math
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from .config import PipelineConfig
from .reporting import utc_now_iso, write_json_object

logger = logging.getLogger(__name__)


class CheckpointReadError(ValueError):
    pass


@dataclass(frozen=True)
class ScoredPoint:
    lat: float
    lng: float
    weight: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: Any) -> "ScoredPoint":
        if not isinstance(data, dict):
            raise CheckpointReadError(f"Point is not an object: {data!r}")
        values = []
        for name in ("lat", "lng", "weight"):
            value = data.get(name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise CheckpointReadError(f"Point field {name!r} is not a number: {value!r}")
            values.append(float(value))
        return cls(lat=values[0], lng=values[1], weight=values[2])


class CheckpointStore(Protocol):
    def load(self, target: str) -> List[ScoredPoint]:
        ...

    def flush(
        self,
        target: str,
        points: Sequence[ScoredPoint],
        meta: Dict[str, Any],
        partial: bool,
    ) -> None:
        ...


def build_meta(cfg: PipelineConfig, partial: bool, count: int) -> Dict[str, Any]:
    return {
        "bounds": cfg.bounds.to_dict(),
        "stepDeg": cfg.step_deg,
        "generatedAt": utc_now_iso(),
        "partial": bool(partial),
        "count": int(count),
    }


def build_document(
    points: Sequence[ScoredPoint], meta: Dict[str, Any], partial: bool
) -> Dict[str, Any]:
    meta = dict(meta)
    meta["partial"] = bool(partial)
    meta["count"] = len(points)
    return {"meta": meta, "points": [p.to_dict() for p in points]}


def parse_document(doc: Any) -> List[ScoredPoint]:
    if not isinstance(doc, dict):
        raise CheckpointReadError("Checkpoint document is not an object")
    points = doc.get("points")
    if not isinstance(points, list):
        raise CheckpointReadError("Checkpoint 'points' is not a list")
    return [ScoredPoint.from_dict(p) for p in points]


class JsonFileCheckpointStore:
    """Checkpoint as a single JSON file, replaced in full on every flush."""

    def load(self, target: str) -> List[ScoredPoint]:
        if not os.path.exists(target):
            logger.info("No checkpoint at %s; starting empty", target)
            return []
        try:
            with open(target, "r", encoding="utf-8") as f:
                doc = json.load(f)
            points = parse_document(doc)
        except (OSError, ValueError) as exc:
            # CheckpointReadError is a ValueError, as is json.JSONDecodeError.
            logger.warning("Unreadable checkpoint %s (%s); starting empty", target, exc)
            return []
        logger.info("Loaded checkpoint %s: %s points", target, len(points))
        return points

    def flush(
        self,
        target: str,
        points: Sequence[ScoredPoint],
        meta: Dict[str, Any],
        partial: bool,
    ) -> None:
        write_json_object(target, build_document(points, meta, partial))


class SqliteCheckpointStore:
    """Checkpoint as one row per target; each flush replaces the row."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                target TEXT PRIMARY KEY,
                document_json TEXT,
                updated_at TEXT
            )
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def load(self, target: str) -> List[ScoredPoint]:
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT document_json FROM checkpoints WHERE target = ?", (target,))
            row = cur.fetchone()
            if not row:
                logger.info("No checkpoint row for %s; starting empty", target)
                return []
            points = parse_document(json.loads(row["document_json"]))
        except (sqlite3.DatabaseError, TypeError, ValueError) as exc:
            logger.warning("Unreadable checkpoint row %s (%s); starting empty", target, exc)
            return []
        logger.info("Loaded checkpoint row %s: %s points", target, len(points))
        return points

    def flush(
        self,
        target: str,
        points: Sequence[ScoredPoint],
        meta: Dict[str, Any],
        partial: bool,
    ) -> None:
        document = build_document(points, meta, partial)
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT OR REPLACE INTO checkpoints (target, document_json, updated_at)
            VALUES (?, ?, ?)
            """,
            (target, json.dumps(document, ensure_ascii=False), utc_now_iso()),
        )
        self.conn.commit()

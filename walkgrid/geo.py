"""Geospatial helpers: bounding boxes and the scoring lattice."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float

    def validate(self) -> None:
        # Boxes crossing the anti-meridian (west > east) are not supported.
        if not self.north > self.south:
            raise ValueError(f"Invalid bounds: north ({self.north}) must be > south ({self.south})")
        if not self.east > self.west:
            raise ValueError(f"Invalid bounds: east ({self.east}) must be > west ({self.west})")

    def to_dict(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            north=float(data["north"]),
            south=float(data["south"]),
            east=float(data["east"]),
            west=float(data["west"]),
        )


@dataclass(frozen=True)
class GridPoint:
    lat: float
    lng: float


def _steps(start: float, stop: float, step: float) -> List[float]:
    # Fixed-increment accumulation, not start + i * step: float drift decides
    # whether a boundary that falls on a step multiple is included.
    values = []
    value = start
    while value <= stop:
        values.append(value)
        value += step
    return values


def make_grid(bounds: BoundingBox, step_deg: float) -> List[GridPoint]:
    """Row-major lattice over ``bounds``: south to north, west to east within a row.

    The same (bounds, step_deg) always produce the same sequence, so a
    point's index is a stable identity across runs.
    """
    if step_deg <= 0:
        raise ValueError(f"step_deg must be positive, got {step_deg}")
    bounds.validate()

    lngs = _steps(bounds.west, bounds.east, step_deg)
    points = []
    for lat in _steps(bounds.south, bounds.north, step_deg):
        for lng in lngs:
            points.append(GridPoint(lat=lat, lng=lng))
    return points


def grid_shape(bounds: BoundingBox, step_deg: float) -> Tuple[int, int]:
    if step_deg <= 0:
        raise ValueError(f"step_deg must be positive, got {step_deg}")
    bounds.validate()
    rows = len(_steps(bounds.south, bounds.north, step_deg))
    cols = len(_steps(bounds.west, bounds.east, step_deg))
    return rows, cols

#!/usr/bin/env python3
"""ecogrid.errors

Error taxonomy for the aggregation pipeline.

Two kinds of problems:
- Configuration / range errors abort the run (exceptions below).
- Data sparsity (points outside every tile, tiles without raster coverage)
  is expected with global occurrence data; it is recorded as diagnostics and
  the run continues.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


class EcogridError(Exception):
    """Base class for ecogrid errors."""


class InvalidCoordinateError(EcogridError, ValueError):
    """A geographic coordinate is outside [-180, 180] x [-90, 90] or not finite."""

    def __init__(self, record: Any, longitude: float, latitude: float, reason: str = ""):
        self.record = record
        self.longitude = longitude
        self.latitude = latitude
        msg = f"Invalid coordinate for record {record!r}: lon={longitude}, lat={latitude}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class TessellationConfigError(EcogridError, ValueError):
    """Non-positive cell size, unknown tile shape or degenerate bounding region."""


class UnassignedPointWarning(UserWarning):
    """Some points fell outside every tile and were left out of aggregation."""


@dataclass(frozen=True)
class EmptyZonalOverlapResult:
    """A tile whose climate summary for one layer is undefined.

    reason is "no_coverage" (no raster cell centre inside the tile) or
    "all_missing" (every covered cell is nodata).
    """

    tile_id: int
    layer: str
    reason: str
    n_cells: int = 0
    detail: Optional[str] = None

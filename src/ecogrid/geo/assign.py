#!/usr/bin/env python3
"""assign.py

Assign planar points to lattice tiles.

No spatial search is needed: a point's (row, col) follows directly from its
coordinates and the lattice geometry.
- Square: floor of the offset divided by the cell size.
- Hexagon: the point lies between two candidate rows; two candidate columns
  per row give four centres, and the nearest centre wins (hexagon tiles are
  exactly the Voronoi cells of their centres).

Boundary rule ("upper-right tile wins"):
- Square cells are half-open, [x0, x0 + w) x [y0, y0 + h), so a point on a
  shared vertical edge goes to the right-hand tile and a point on a shared
  horizontal edge goes to the upper tile.
- Hexagon: among centres equidistant within HEX_TIE_RTOL * w**2, the highest
  row wins, then the highest column.

Points outside the lattice (or not finite, or in a tile excluded via
`allowed`) are unassigned: tile id -1, counted and reported with one
UnassignedPointWarning.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Iterable, List, Optional

import geopandas as gpd
import numpy as np
import shapely

from ecogrid.errors import UnassignedPointWarning
from ecogrid.geo.tessellate import SQUARE, Lattice

UNASSIGNED = -1
HEX_TIE_RTOL = 1e-9


@dataclass(frozen=True)
class AssignmentResult:
    tile_ids: np.ndarray
    unassigned_index: np.ndarray

    @property
    def n_points(self) -> int:
        return int(self.tile_ids.size)

    @property
    def n_unassigned(self) -> int:
        return int(self.unassigned_index.size)

    @property
    def n_assigned(self) -> int:
        return self.n_points - self.n_unassigned


def _snap_to_edges(v: np.ndarray, origin: float, size: float) -> np.ndarray:
    """Cell index of v along one axis, consistent with Lattice.polygon edges.

    floor((v - origin) / size) can be one off from the polygon edge
    origin + k * size by rounding; compare against that same expression.
    """
    k = np.floor((v - origin) / size).astype(np.int64)
    k = k + (v >= origin + (k + 1) * size)
    k = k - (v < origin + k * size)
    return k


def _locate_square(lattice: Lattice, x: np.ndarray, y: np.ndarray, finite: np.ndarray) -> np.ndarray:
    col = _snap_to_edges(x, lattice.xmin, lattice.width)
    row = _snap_to_edges(y, lattice.ymin, lattice.height)
    inside = finite & (col >= 0) & (col < lattice.ncols) & (row >= 0) & (row < lattice.nrows)
    return np.where(inside, row * lattice.ncols + col, UNASSIGNED)


def _locate_hexagon(lattice: Lattice, x: np.ndarray, y: np.ndarray, finite: np.ndarray) -> np.ndarray:
    w = lattice.width
    dy = lattice.row_spacing

    r0 = np.floor((y - lattice.ymin) / dy).astype(np.int64)
    cand_rows = []
    cand_cols = []
    for r in (r0, r0 + 1):
        offset = np.where(r % 2 == 1, w / 2.0, 0.0)
        c0 = np.floor((x - lattice.xmin - offset) / w).astype(np.int64)
        cand_rows.extend([r, r])
        cand_cols.extend([c0, c0 + 1])

    rows = np.stack(cand_rows, axis=1)
    cols = np.stack(cand_cols, axis=1)
    cx = lattice.xmin + cols * w + np.where(rows % 2 == 1, w / 2.0, 0.0)
    cy = lattice.ymin + rows * dy
    d2 = (x[:, None] - cx) ** 2 + (y[:, None] - cy) ** 2

    best = d2.min(axis=1)
    tie = d2 <= best[:, None] + HEX_TIE_RTOL * w * w
    # Lexicographic (row, col) rank; cols stay within [-1, ncols + 1]
    rank = rows * (lattice.ncols + 4) + (cols + 2)
    rank = np.where(tie, rank, np.iinfo(np.int64).min)
    pick = np.argmax(rank, axis=1)

    n = x.shape[0]
    row = rows[np.arange(n), pick]
    col = cols[np.arange(n), pick]
    inside = finite & (col >= 0) & (col < lattice.ncols) & (row >= 0) & (row < lattice.nrows)
    return np.where(inside, row * lattice.ncols + col, UNASSIGNED)


def locate(lattice: Lattice, x, y) -> np.ndarray:
    """Tile id for each (x, y), UNASSIGNED where no tile contains the point."""
    x = np.atleast_1d(np.asarray(x, dtype=float)).ravel()
    y = np.atleast_1d(np.asarray(y, dtype=float)).ravel()
    if x.shape != y.shape:
        raise ValueError(f"x and y must have the same length, got {x.shape} and {y.shape}")
    finite = np.isfinite(x) & np.isfinite(y)
    xs = np.where(finite, x, lattice.xmin)
    ys = np.where(finite, y, lattice.ymin)
    if lattice.shape == SQUARE:
        return _locate_square(lattice, xs, ys, finite)
    return _locate_hexagon(lattice, xs, ys, finite)


def assign_points(
    x,
    y,
    lattice: Lattice,
    allowed: Optional[Iterable[int]] = None,
    *,
    warn: bool = True,
) -> AssignmentResult:
    """Assign every point to at most one tile.

    allowed restricts assignment to a subset of tile ids (e.g. tiles kept by
    tessellate(region=...)); points in other tiles count as unassigned.
    """
    ids = locate(lattice, x, y)
    if allowed is not None:
        allowed_arr = np.fromiter((int(a) for a in allowed), dtype=np.int64)
        ids = np.where((ids >= 0) & ~np.isin(ids, allowed_arr), UNASSIGNED, ids)

    unassigned = np.flatnonzero(ids == UNASSIGNED)
    if unassigned.size and warn:
        msg = f"{unassigned.size} of {ids.size} points fell outside every tile"
        print(f"  - warning: {msg}; excluded from aggregation")
        warnings.warn(msg, UnassignedPointWarning, stacklevel=2)

    return AssignmentResult(tile_ids=ids, unassigned_index=unassigned)


def containing_tiles(x, y, tiles: gpd.GeoDataFrame) -> List[List[int]]:
    """Brute-force reference: ids of every tile whose closed polygon covers each point.

    O(tiles x points); for checking the lattice lookup on small inputs.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    hits: List[List[int]] = [[] for _ in range(x.size)]
    for tid, geom in zip(tiles["tile_id"], tiles.geometry):
        inside = shapely.intersects_xy(geom, x, y)
        for i in np.flatnonzero(inside):
            hits[i].append(int(tid))
    return hits

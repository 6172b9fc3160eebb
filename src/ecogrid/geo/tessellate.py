#!/usr/bin/env python3
"""tessellate.py

Regular square / hexagonal tessellation of a planar bounding box.

A Lattice is the whole grid described by a handful of numbers (origin, cell
size, shape, rows, columns). Tiles are generated from it on demand, so a
world-extent grid at fine resolution never has to be materialized; only the
tiles that end up occupied need polygons.

Layout:
- Square: axis-aligned cells [x0, x0 + w) x [y0, y0 + h), origin at the bbox
  minimum corner. ncols = floor(W / w) + 1 so the closed bbox is covered.
- Hexagon (pointy-top): flat-to-flat width w, rows spaced w * sqrt(3) / 2,
  odd rows shifted right by w / 2. The centre of tile (row 0, col 0) sits on
  the bbox minimum corner.

Tile ids are row-major, bottom row first: tile_id = row * ncols + col.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from ecogrid.errors import TessellationConfigError

SQUARE = "square"
HEXAGON = "hexagon"
SHAPES = (SQUARE, HEXAGON)

SQRT3 = math.sqrt(3.0)

BBox = Tuple[float, float, float, float]
CellSize = Union[float, Tuple[float, float], Sequence[float]]

TILE_COLUMNS = ["tile_id", "row", "col", "shape", "cell_width", "cell_height", "geometry"]


@dataclass(frozen=True)
class Tile:
    tile_id: int
    row: int
    col: int
    shape: str
    cell_size: Tuple[float, float]
    geometry: Polygon


@dataclass(frozen=True)
class Lattice:
    """A regular tiling anchored at (xmin, ymin)."""

    xmin: float
    ymin: float
    width: float
    height: float
    shape: str
    nrows: int
    ncols: int
    crs: Optional[Any] = None

    @property
    def n_tiles(self) -> int:
        return self.nrows * self.ncols

    @property
    def row_spacing(self) -> float:
        if self.shape == HEXAGON:
            return self.width * SQRT3 / 2.0
        return self.height

    @property
    def hex_radius(self) -> float:
        """Centre-to-vertex distance of a hexagon tile."""
        return self.width / SQRT3

    @property
    def extent(self) -> BBox:
        """Bounding box of the union of all tiles."""
        if self.shape == SQUARE:
            return (
                self.xmin,
                self.ymin,
                self.xmin + self.ncols * self.width,
                self.ymin + self.nrows * self.height,
            )
        r = self.hex_radius
        odd_shift = self.width / 2.0 if self.nrows > 1 else 0.0
        return (
            self.xmin - self.width / 2.0,
            self.ymin - r,
            self.xmin + (self.ncols - 1) * self.width + odd_shift + self.width / 2.0,
            self.ymin + (self.nrows - 1) * self.row_spacing + r,
        )

    def tile_id(self, row: int, col: int) -> int:
        return row * self.ncols + col

    def row_col(self, tile_id: int) -> Tuple[int, int]:
        return divmod(tile_id, self.ncols)

    def contains_index(self, row: int, col: int) -> bool:
        return 0 <= row < self.nrows and 0 <= col < self.ncols

    def center(self, row: int, col: int) -> Tuple[float, float]:
        if self.shape == SQUARE:
            return (
                self.xmin + (col + 0.5) * self.width,
                self.ymin + (row + 0.5) * self.height,
            )
        offset = self.width / 2.0 if row % 2 else 0.0
        return (
            self.xmin + col * self.width + offset,
            self.ymin + row * self.row_spacing,
        )

    def polygon(self, row: int, col: int) -> Polygon:
        if self.shape == SQUARE:
            # Both edges from the lattice formula so neighbours share them exactly
            x0 = self.xmin + col * self.width
            x1 = self.xmin + (col + 1) * self.width
            y0 = self.ymin + row * self.height
            y1 = self.ymin + (row + 1) * self.height
            return box(x0, y0, x1, y1)
        cx, cy = self.center(row, col)
        r = self.hex_radius
        hw = self.width / 2.0
        return Polygon(
            [
                (cx, cy + r),
                (cx - hw, cy + r / 2.0),
                (cx - hw, cy - r / 2.0),
                (cx, cy - r),
                (cx + hw, cy - r / 2.0),
                (cx + hw, cy + r / 2.0),
            ]
        )

    def tile(self, row: int, col: int) -> Tile:
        if not self.contains_index(row, col):
            raise IndexError(f"Tile ({row}, {col}) outside lattice {self.nrows}x{self.ncols}")
        return Tile(
            tile_id=int(self.tile_id(row, col)),
            row=int(row),
            col=int(col),
            shape=self.shape,
            cell_size=(self.width, self.height),
            geometry=self.polygon(row, col),
        )

    def index_window(self, bbox: BBox) -> Tuple[int, int, int, int]:
        """Row/col ranges (row_lo, row_hi, col_lo, col_hi), half-open, of tiles that may touch bbox."""
        bxmin, bymin, bxmax, bymax = bbox
        if self.shape == SQUARE:
            col_lo = math.floor((bxmin - self.xmin) / self.width)
            col_hi = math.floor((bxmax - self.xmin) / self.width) + 1
            row_lo = math.floor((bymin - self.ymin) / self.height)
            row_hi = math.floor((bymax - self.ymin) / self.height) + 1
        else:
            # One extra ring covers the odd-row shift and the hexagon points
            col_lo = math.floor((bxmin - self.xmin) / self.width) - 1
            col_hi = math.ceil((bxmax - self.xmin) / self.width) + 1
            row_lo = math.floor((bymin - self.ymin) / self.row_spacing) - 1
            row_hi = math.ceil((bymax - self.ymin) / self.row_spacing) + 2
        return (
            max(row_lo, 0),
            min(row_hi, self.nrows),
            max(col_lo, 0),
            min(col_hi, self.ncols),
        )


# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

def _coerce_cell_size(cell_size: CellSize) -> Tuple[float, float]:
    if isinstance(cell_size, (int, float)):
        return (float(cell_size), float(cell_size))
    try:
        w, h = cell_size  # type: ignore[misc]
        return (float(w), float(h))
    except (TypeError, ValueError) as e:
        raise TessellationConfigError(
            f"cell_size must be a number or (width, height), got {cell_size!r}"
        ) from e


def build_lattice(
    bounds: BBox,
    cell_size: CellSize,
    shape: str = SQUARE,
    crs: Optional[Any] = None,
) -> Lattice:
    """Validate inputs and lay a lattice over bounds.

    Raises TessellationConfigError for a non-positive or non-finite cell
    size, an unknown shape, a hexagon with width != height, or a degenerate
    / non-finite bounding box.
    """
    if shape not in SHAPES:
        raise TessellationConfigError(f"Unknown tile shape {shape!r}; expected one of {SHAPES}")

    w, h = _coerce_cell_size(cell_size)
    if not (math.isfinite(w) and math.isfinite(h)) or w <= 0 or h <= 0:
        raise TessellationConfigError(f"Cell size must be positive and finite, got ({w}, {h})")
    if shape == HEXAGON and not math.isclose(w, h, rel_tol=1e-12):
        raise TessellationConfigError(
            f"Hexagonal tiles are regular; cell width and height must match, got ({w}, {h})"
        )

    try:
        xmin, ymin, xmax, ymax = map(float, bounds)
    except (TypeError, ValueError) as e:
        raise TessellationConfigError(f"Bounds must be (xmin, ymin, xmax, ymax), got {bounds!r}") from e
    if not all(math.isfinite(v) for v in (xmin, ymin, xmax, ymax)):
        raise TessellationConfigError(f"Bounds must be finite, got {bounds!r}")
    if xmax <= xmin or ymax <= ymin:
        raise TessellationConfigError(f"Degenerate bounding region {bounds!r}")

    if shape == SQUARE:
        ncols = math.floor((xmax - xmin) / w) + 1
        nrows = math.floor((ymax - ymin) / h) + 1
    else:
        dy = w * SQRT3 / 2.0
        ncols = math.ceil((xmax - xmin) / w) + 1
        nrows = math.ceil((ymax - ymin) / dy) + 1

    return Lattice(
        xmin=xmin,
        ymin=ymin,
        width=w,
        height=w if shape == HEXAGON else h,
        shape=shape,
        nrows=int(nrows),
        ncols=int(ncols),
        crs=crs,
    )


# -----------------------------------------------------------------------------
# Tile generation
# -----------------------------------------------------------------------------

def iter_tiles(
    lattice: Lattice,
    rows: Optional[Iterable[int]] = None,
    cols: Optional[Iterable[int]] = None,
) -> Iterator[Tile]:
    """Lazily yield tiles in row-major order (bottom row first)."""
    row_range = range(lattice.nrows) if rows is None else rows
    col_list = list(range(lattice.ncols) if cols is None else cols)
    for row in row_range:
        for col in col_list:
            yield lattice.tile(row, col)


def tiles_to_frame(tiles: Iterable[Tile], crs: Optional[Any] = None) -> gpd.GeoDataFrame:
    records = [
        {
            "tile_id": t.tile_id,
            "row": t.row,
            "col": t.col,
            "shape": t.shape,
            "cell_width": t.cell_size[0],
            "cell_height": t.cell_size[1],
            "geometry": t.geometry,
        }
        for t in tiles
    ]
    if not records:
        return gpd.GeoDataFrame(
            {c: [] for c in TILE_COLUMNS[:-1]},
            geometry=gpd.GeoSeries([], crs=crs),
            crs=crs,
        )
    gdf = gpd.GeoDataFrame(records, geometry="geometry", crs=crs)
    return gdf[TILE_COLUMNS]


def tessellate(
    lattice: Lattice,
    region: Optional[BaseGeometry] = None,
) -> gpd.GeoDataFrame:
    """Materialize the lattice as a GeoDataFrame.

    If region is given, keep only tiles that intersect it (the usual
    "grid over the world, keep tiles touching land" step). Rows and columns
    outside the region's bbox are never generated.
    """
    if region is None:
        gdf = tiles_to_frame(iter_tiles(lattice), crs=lattice.crs)
    else:
        row_lo, row_hi, col_lo, col_hi = lattice.index_window(region.bounds)
        prepared = prep(region)
        kept = (
            t
            for t in iter_tiles(lattice, rows=range(row_lo, row_hi), cols=range(col_lo, col_hi))
            if prepared.intersects(t.geometry)
        )
        gdf = tiles_to_frame(kept, crs=lattice.crs)

    print(
        f"[GRID] {lattice.shape} lattice {lattice.nrows}x{lattice.ncols} "
        f"(cell {lattice.width:g} x {lattice.height:g}): {len(gdf)} tiles"
    )
    return gdf


def tiles_for(lattice: Lattice, tile_ids: Iterable[int]) -> gpd.GeoDataFrame:
    """Build only the requested tiles, sorted by tile_id."""
    ids = sorted({int(t) for t in tile_ids})
    tiles = []
    for tid in ids:
        row, col = lattice.row_col(tid)
        tiles.append(lattice.tile(row, col))
    return tiles_to_frame(tiles, crs=lattice.crs)


def tile_centers(lattice: Lattice, tile_ids: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
    """Centre coordinates for an array of tile ids."""
    ids = np.asarray(tile_ids, dtype=np.int64)
    rows, cols = np.divmod(ids, lattice.ncols)
    if lattice.shape == SQUARE:
        cx = lattice.xmin + (cols + 0.5) * lattice.width
        cy = lattice.ymin + (rows + 0.5) * lattice.height
    else:
        cx = lattice.xmin + cols * lattice.width + (rows % 2) * (lattice.width / 2.0)
        cy = lattice.ymin + rows * lattice.row_spacing
    return cx, cy

#!/usr/bin/env python3
"""zonal.py

Per-tile mean of climate rasters (WorldClim / CHELSA style layers).

Approach:
- Read only the raster window covering the lattice extent (the same
  transform_bounds + from_bounds window read used for CHELSA subsets)
- Transform raster cell centres into the lattice CRS with pyproj
- Locate each cell centre on the lattice, exactly like occurrence points,
  so a cell belongs to the tile containing its centre
- Average valid cells per tile with np.bincount

Layers on the same grid (same CRS, window transform and shape) share one
cell -> tile index, so the overlap is computed once per grid, not per layer.

Missing data:
- nodata cells and NaN are excluded from both sum and count
- a tile with no covered cell, or only missing cells, gets NaN (never 0)
  and an EmptyZonalOverlapResult diagnostic
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import rasterio
from affine import Affine
from pyproj import CRS, Transformer
from rasterio.errors import WindowError
from rasterio.warp import transform_bounds
from rasterio.windows import Window, from_bounds

from ecogrid.errors import EmptyZonalOverlapResult
from ecogrid.geo.assign import locate
from ecogrid.geo.tessellate import Lattice


@dataclass(frozen=True)
class RasterLayer:
    name: str
    path: Path
    band: int = 1


# -----------------------------------------------------------------------------
# Core statistics (pure numpy)
# -----------------------------------------------------------------------------

def _as_float(values, nodata: Optional[float] = None) -> np.ndarray:
    if isinstance(values, np.ma.MaskedArray):
        arr = values.astype("float64").filled(np.nan)
    else:
        arr = np.asarray(values, dtype="float64").copy()
    if nodata is not None and not np.isnan(nodata):
        arr[arr == nodata] = np.nan
    return arr


def zonal_means(tile_index, values, nodata: Optional[float] = None) -> pd.DataFrame:
    """Mean of valid values per tile.

    Parameters
    ----------
    tile_index : array of int
        Tile id for every raster cell (-1 = outside the lattice), same shape
        as values.
    values : array or masked array
        Raster cell values.
    nodata : float | None
        Sentinel for missing cells, in addition to NaN and masked cells.

    Returns
    -------
    DataFrame indexed by tile_id with columns mean, n_cells (covered cells)
    and n_valid (non-missing cells). Only tiles with at least one covered
    cell appear.
    """
    idx = np.asarray(tile_index, dtype=np.int64).ravel()
    vals = _as_float(values, nodata).ravel()
    if idx.shape != vals.shape:
        raise ValueError(f"tile_index and values differ in size: {idx.shape} vs {vals.shape}")

    covered = idx >= 0
    ids, inv = np.unique(idx[covered], return_inverse=True)
    cov_vals = vals[covered]
    valid = np.isfinite(cov_vals)

    n_cells = np.bincount(inv, minlength=ids.size)
    n_valid = np.bincount(inv[valid], minlength=ids.size)
    sums = np.bincount(inv[valid], weights=cov_vals[valid], minlength=ids.size)
    with np.errstate(invalid="ignore", divide="ignore"):
        means = np.where(n_valid > 0, sums / np.maximum(n_valid, 1), np.nan)

    return pd.DataFrame(
        {"mean": means, "n_cells": n_cells, "n_valid": n_valid},
        index=pd.Index(ids, name="tile_id"),
    )


def cell_tile_index(
    transform: Affine,
    width: int,
    height: int,
    src_crs,
    lattice: Lattice,
) -> np.ndarray:
    """Tile id of every raster cell centre, shape (height, width)."""
    cols, rows = np.meshgrid(np.arange(width) + 0.5, np.arange(height) + 0.5)
    xs = transform.a * cols + transform.b * rows + transform.c
    ys = transform.d * cols + transform.e * rows + transform.f

    if src_crs is not None and lattice.crs is not None:
        src = CRS.from_user_input(src_crs)
        dst = CRS.from_user_input(lattice.crs)
        if src != dst:
            tr = Transformer.from_crs(src, dst, always_xy=True)
            xs, ys = tr.transform(xs, ys)

    return locate(lattice, xs, ys).reshape(height, width)


def _summarize_layer(
    name: str,
    stats: pd.DataFrame,
    tile_ids: Sequence[int],
) -> Tuple[pd.Series, List[EmptyZonalOverlapResult]]:
    stats = stats.reindex(pd.Index(tile_ids, name="tile_id"))
    empties = []
    for tid, row in stats[stats["mean"].isna()].iterrows():
        n_cells = 0 if pd.isna(row["n_cells"]) else int(row["n_cells"])
        reason = "no_coverage" if n_cells == 0 else "all_missing"
        empties.append(EmptyZonalOverlapResult(tile_id=int(tid), layer=name, reason=reason, n_cells=n_cells))
    print(f"[ZONAL] {name}: {len(stats) - len(empties)}/{len(stats)} tiles with data")
    return stats["mean"].rename(name), empties


# -----------------------------------------------------------------------------
# In-memory rasters
# -----------------------------------------------------------------------------

def zonal_climate_from_arrays(
    arrays: Mapping[str, np.ndarray],
    transform: Affine,
    lattice: Lattice,
    tile_ids: Sequence[int],
    *,
    crs=None,
    nodata: Optional[float] = None,
) -> Tuple[pd.DataFrame, List[EmptyZonalOverlapResult]]:
    """Per-tile means for several same-grid 2D arrays (one column per array)."""
    columns = []
    empties: List[EmptyZonalOverlapResult] = []
    index = None
    for name, arr in arrays.items():
        arr = np.asarray(arr) if not isinstance(arr, np.ma.MaskedArray) else arr
        if arr.ndim != 2:
            raise ValueError(f"Layer {name} must be 2D, got shape {arr.shape}")
        if index is None or index.shape != arr.shape:
            index = cell_tile_index(transform, arr.shape[1], arr.shape[0], crs, lattice)
        col, empty = _summarize_layer(name, zonal_means(index, arr, nodata), tile_ids)
        columns.append(col)
        empties.extend(empty)

    table = pd.concat(columns, axis=1) if columns else pd.DataFrame(index=pd.Index(tile_ids, name="tile_id"))
    return table, empties


# -----------------------------------------------------------------------------
# Raster files
# -----------------------------------------------------------------------------

def _lattice_window(src, lattice: Lattice) -> Optional[Window]:
    """Raster window covering the lattice extent, or None if they don't overlap."""
    full = Window(0, 0, src.width, src.height)
    bounds = lattice.extent
    if lattice.crs is not None and src.crs is not None:
        try:
            bounds = transform_bounds(
                CRS.from_user_input(lattice.crs).to_wkt(),
                src.crs,
                *bounds,
                densify_pts=21,
            )
        except Exception as e:
            # Extents past the projection's valid area; read the whole raster
            print(f"  - warning: can't window {Path(src.name).name} to the grid ({e}); reading full raster")
            return full
        if not np.all(np.isfinite(bounds)):
            print(f"  - warning: grid extent not finite in {Path(src.name).name} CRS; reading full raster")
            return full

    win = from_bounds(*bounds, transform=src.transform)
    win = win.round_offsets().round_lengths()
    # Pad by two cells; edge cells whose centres fall inside must be kept
    win = Window(win.col_off - 2, win.row_off - 2, win.width + 4, win.height + 4)
    try:
        return win.intersection(full)
    except WindowError:
        return None


def extract_zonal_climate(
    layers: Iterable[RasterLayer],
    lattice: Lattice,
    tile_ids: Sequence[int],
) -> Tuple[pd.DataFrame, List[EmptyZonalOverlapResult]]:
    """Per-tile climate means for each raster layer.

    Parameters
    ----------
    layers : RasterLayer sequence
        Rasters to summarize; names become output columns.
    lattice : Lattice
        Tessellation the tiles belong to (with its planar CRS).
    tile_ids : sequence of int
        Tiles to report, typically the occupied tiles.

    Returns
    -------
    (DataFrame, list)
        Table indexed by tile_id with one float column per layer (NaN where
        undefined), and the EmptyZonalOverlapResult diagnostics.
    """
    tile_ids = [int(t) for t in tile_ids]
    columns = []
    empties: List[EmptyZonalOverlapResult] = []
    index_cache: Dict[tuple, np.ndarray] = {}

    env_opts = {"GDAL_DISABLE_READDIR_ON_OPEN": "EMPTY_DIR"}
    with rasterio.Env(**env_opts):
        for layer in layers:
            path = Path(layer.path)
            if not path.exists():
                raise SystemExit(f"Raster not found for layer {layer.name}: {path}")

            with rasterio.open(path) as src:
                if src.crs is None and lattice.crs is not None:
                    raise SystemExit(f"Raster has no CRS: {path}")
                if not 1 <= layer.band <= src.count:
                    raise ValueError(f"Layer {layer.name}: band {layer.band} not in 1..{src.count}")

                win = _lattice_window(src, lattice)
                if win is None:
                    print(f"  - warning: {path.name} does not overlap the grid")
                    stats = zonal_means(np.empty(0, dtype=np.int64), np.empty(0))
                else:
                    data = src.read(layer.band, window=win, masked=True)
                    win_transform = src.window_transform(win)
                    key = (
                        src.crs.to_wkt() if src.crs else None,
                        tuple(win_transform),
                        data.shape,
                    )
                    if key not in index_cache:
                        index_cache[key] = cell_tile_index(
                            win_transform,
                            data.shape[1],
                            data.shape[0],
                            src.crs.to_wkt() if src.crs else None,
                            lattice,
                        )
                    stats = zonal_means(index_cache[key], data, src.nodata)

            col, empty = _summarize_layer(layer.name, stats, tile_ids)
            columns.append(col)
            empties.extend(empty)

    if not columns:
        return pd.DataFrame(index=pd.Index(tile_ids, name="tile_id")), empties
    return pd.concat(columns, axis=1), empties

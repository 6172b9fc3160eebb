#!/usr/bin/env python3
"""reproject.py

Move occurrence points and boundary polygons from lon/lat (WGS84) into a
Lambert azimuthal equal-area plane, in metres.

Grid cells only have comparable areas in an equal-area CRS, so every
count-per-cell metric downstream assumes this step ran first.
"""

from __future__ import annotations

from typing import Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from pyproj import CRS, Transformer

from ecogrid.errors import InvalidCoordinateError

GEOGRAPHIC_CRS = "EPSG:4326"


def laea_crs(lat_0: float, lon_0: float) -> CRS:
    """Lambert azimuthal equal-area on WGS84, anchored at (lat_0, lon_0)."""
    if not (-90.0 <= lat_0 <= 90.0) or not (-180.0 <= lon_0 <= 180.0):
        raise InvalidCoordinateError("projection anchor", lon_0, lat_0, "anchor outside valid range")
    return CRS.from_proj4(
        f"+proj=laea +lat_0={lat_0} +lon_0={lon_0} +x_0=0 +y_0=0 +datum=WGS84 +units=m +no_defs"
    )


def validate_lonlat(
    lon: np.ndarray,
    lat: np.ndarray,
    labels: Optional[Sequence] = None,
) -> None:
    """Raise InvalidCoordinateError for the first out-of-range coordinate.

    labels identifies records in the error (defaults to positional index).
    """
    lon = np.asarray(lon, dtype=float)
    lat = np.asarray(lat, dtype=float)
    with np.errstate(invalid="ignore"):
        bad = ~(np.isfinite(lon) & np.isfinite(lat) & (np.abs(lon) <= 180.0) & (np.abs(lat) <= 90.0))
    if bad.any():
        i = int(np.flatnonzero(bad)[0])
        record = labels[i] if labels is not None else i
        reason = f"{int(bad.sum())} invalid coordinate(s) in input"
        raise InvalidCoordinateError(record, float(lon[i]), float(lat[i]), reason)


def project_lonlat(lon: np.ndarray, lat: np.ndarray, crs: CRS) -> tuple:
    """Transform lon/lat arrays to planar x/y arrays (metres)."""
    validate_lonlat(lon, lat)
    tr = Transformer.from_crs(GEOGRAPHIC_CRS, crs, always_xy=True)
    x, y = tr.transform(np.asarray(lon, dtype=float), np.asarray(lat, dtype=float))
    return np.asarray(x, dtype=float), np.asarray(y, dtype=float)


def project_points(
    df: pd.DataFrame,
    crs: CRS,
    *,
    lon_col: str = "longitude",
    lat_col: str = "latitude",
    label_col: Optional[str] = "species",
) -> gpd.GeoDataFrame:
    """Project an occurrence frame; returns a GeoDataFrame with x, y columns.

    The output keeps the input index and all input columns. Raises
    InvalidCoordinateError naming the offending record (index and label)
    before anything is transformed.
    """
    lon = df[lon_col].to_numpy(dtype=float)
    lat = df[lat_col].to_numpy(dtype=float)

    if label_col and label_col in df.columns:
        labels = [f"{idx} ({sp})" for idx, sp in zip(df.index, df[label_col])]
    else:
        labels = list(df.index)
    validate_lonlat(lon, lat, labels=labels)

    tr = Transformer.from_crs(GEOGRAPHIC_CRS, crs, always_xy=True)
    x, y = tr.transform(lon, lat)

    out = gpd.GeoDataFrame(
        df.copy(),
        geometry=gpd.points_from_xy(x, y),
        crs=crs,
    )
    out["x"] = np.asarray(x, dtype=float)
    out["y"] = np.asarray(y, dtype=float)
    return out


def project_boundary(gdf: gpd.GeoDataFrame, crs: CRS) -> gpd.GeoDataFrame:
    """Reproject a boundary GeoDataFrame into the planar CRS."""
    if gdf.crs is None:
        raise ValueError("Boundary geometries have no CRS; can't reproject safely.")
    return gdf.to_crs(crs)

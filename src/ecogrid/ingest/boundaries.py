#!/usr/bin/env python3
"""boundaries.py

Turn a vector boundary source (e.g. Natural Earth world countries) into a
single clean region polygon used to bound the tessellation.

Steps:
1. Read the vector file with geopandas
2. Optionally keep only features whose name/code field matches
3. Fix invalid geometries, drop empties
4. Dissolve to one region

Notes:
- Name matching is normalized so "Europe", " europe " and "EUROPE" match,
  and numeric codes like "07" and 7 match.
- If name_field is not given, it is inferred from the columns (NAME,
  ADMIN, CONTINENT, ISO_A3, ...).
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Sequence

import geopandas as gpd
import shapely
from shapely.geometry.base import BaseGeometry


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------

def _normalize_name(x) -> str:
    """Normalize a feature name or code to a comparable string.

    Handles ints, '07', ' Europe ', 'north  america'.
    Returns empty string for invalid inputs.
    """
    if x is None:
        return ""
    s = str(x).strip()
    if not re.search(r"[A-Za-z0-9]", s):
        return ""
    if s.isdigit():
        return str(int(s))
    return re.sub(r"\s+", " ", s).lower()


def _pick_name_field(columns: List[str], preferred: Optional[str] = None) -> str:
    """Infer which column holds the feature name/code to filter on.

    If preferred is provided and exists, use it. Otherwise score columns;
    Natural Earth and GADM exports use different names (NAME, ADMIN,
    NAME_0, SOVEREIGNT, ISO_A3, ...).
    """
    if preferred:
        if preferred in columns:
            return preferred
        raise ValueError(f"name_field '{preferred}' not found. Available columns: {columns}")

    candidates = []
    for c in columns:
        if c == "geometry":
            continue
        cl = c.lower()
        score = 0
        if cl in ("name", "admin", "name_0", "country", "continent"):
            score += 4
        if "name" in cl:
            score += 3
        if "iso" in cl or "code" in cl:
            score += 2
        if "sov" in cl or "admin" in cl:
            score += 1
        # Translated / abbreviated name columns
        if re.search(r"name_[a-z]{2}$", cl) or "abbrev" in cl or "sort" in cl:
            score -= 3
        candidates.append((score, c))

    if not candidates:
        raise ValueError("Boundary file has no attribute columns to filter on.")
    candidates.sort(key=lambda t: (-t[0], t[1]))
    best_score, best_col = candidates[0]
    if best_score < 3:
        raise ValueError(
            "Couldn't confidently infer the boundary name column. "
            "Pass name_field explicitly.\n"
            f"Columns: {columns}\n"
            f"Top guesses: {candidates[:8]}"
        )
    return best_col


def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Fix invalid geometries (country outlines often self-intersect)."""
    gdf = gdf.copy()
    gdf["geometry"] = gdf.geometry.make_valid()
    return gdf


# -----------------------------------------------------------------------------
# Core function
# -----------------------------------------------------------------------------

def load_boundary(
    path: Path,
    *,
    name_field: Optional[str] = None,
    names: Sequence[str] = (),
    layer: Optional[str] = None,
    dissolve: bool = True,
) -> gpd.GeoDataFrame:
    """Read a boundary source and return the selected region.

    Args:
        path: Any vector file geopandas can read (shp, gpkg, geojson)
        name_field: Column to match names against (inferred if None)
        names: Feature names/codes to keep; empty keeps everything
        layer: Layer name for multi-layer sources such as GeoPackage
        dissolve: If True, return a single-row GeoDataFrame

    Returns:
        GeoDataFrame in the source CRS.

    Raises:
        SystemExit: On a missing file, empty source, or missing CRS.
        ValueError: If requested names are not found.
    """
    path = Path(path)
    if not path.exists():
        raise SystemExit(f"Boundary file not found: {path}")

    gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)

    if gdf.empty:
        raise SystemExit(f"Loaded {path} but it contains zero features. Wrong file?")
    if gdf.crs is None:
        raise SystemExit(
            f"Boundary {path} has no CRS (.prj missing or unreadable). "
            "Fix that first; reprojection depends on it."
        )

    if names:
        field = _pick_name_field(list(gdf.columns), preferred=name_field)
        wanted = {_normalize_name(n) for n in names}
        normed = gdf[field].map(_normalize_name)
        gdf = gdf[normed.isin(wanted)]
        found = set(normed[normed.isin(wanted)])
        missing = wanted - found
        if missing:
            raise ValueError(
                f"Boundary names not found in field '{field}': {sorted(missing)}"
            )
        print(f"[BOUNDARY] Selected {len(gdf)} features by {field}")

    gdf = _make_valid(gdf)
    gdf = gdf[~gdf.geometry.is_empty & gdf.geometry.notna()].copy()

    if dissolve:
        region: BaseGeometry = shapely.union_all(gdf.geometry.to_numpy())
        gdf = gpd.GeoDataFrame({"name": ["region"]}, geometry=[region], crs=gdf.crs)

    print(f"[BOUNDARY] {path.name}: {len(gdf)} feature(s), CRS {gdf.crs.to_string()}")
    return gdf

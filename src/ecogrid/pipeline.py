#!/usr/bin/env python3
"""ecogrid.pipeline

Occurrences -> equal-area grid -> richness per tile -> climate per tile.

Stages (each owns its output; nothing is shared or mutated across stages):
1. Load occurrences (ingest.occurrences)
2. Load boundary, if any (ingest.boundaries)
3. Project points and boundary to Lambert azimuthal equal-area (geo.reproject)
4. Lay the lattice over the boundary / points / configured bounds (geo.tessellate)
5. Assign points to tiles (geo.assign)
6. Distinct species per tile (features.richness)
7. Climate means per occupied tile (geo.zonal)
8. Join on tile_id, sort, optionally write GeoPackage / CSV

Error policy:
- Config and coordinate-range errors propagate and abort the run
- Unassigned points and tiles without climate data are recorded in
  Diagnostics; the run continues

Example:
    from ecogrid.config import load_pipeline_config
    from ecogrid.pipeline import run_pipeline

    result = run_pipeline(load_pipeline_config("config/pipeline.yaml"))
    print(result.diagnostics.summary())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import geopandas as gpd
import pandas as pd
from shapely.geometry.base import BaseGeometry

from ecogrid.config import DEFAULT_GPKG_LAYER, PipelineConfig, format_bbox, union_bbox
from ecogrid.errors import EmptyZonalOverlapResult
from ecogrid.features.richness import compute_richness
from ecogrid.geo.assign import assign_points
from ecogrid.geo.reproject import laea_crs, project_boundary, project_points
from ecogrid.geo.tessellate import Lattice, build_lattice, tessellate
from ecogrid.geo.zonal import RasterLayer, extract_zonal_climate
from ecogrid.ingest.boundaries import load_boundary
from ecogrid.ingest.occurrences import load_occurrences


@dataclass
class Diagnostics:
    n_records: int = 0
    n_missing_coords: int = 0
    n_assigned: int = 0
    n_unassigned: int = 0
    unassigned_index: List[int] = field(default_factory=list)
    empty_zonal: List[EmptyZonalOverlapResult] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            f"records loaded: {self.n_records}",
            f"dropped (missing coordinates): {self.n_missing_coords}",
            f"assigned to tiles: {self.n_assigned}",
            f"unassigned: {self.n_unassigned}",
            f"empty zonal results: {len(self.empty_zonal)}",
        ]
        return "\n".join(lines)


@dataclass
class PipelineResult:
    table: gpd.GeoDataFrame
    lattice: Lattice
    diagnostics: Diagnostics


def resolve_grid_bounds(
    points: gpd.GeoDataFrame,
    cell_size: Tuple[float, float],
    *,
    bounds: Optional[Tuple[float, float, float, float]] = None,
    region: Optional[BaseGeometry] = None,
) -> Tuple[float, float, float, float]:
    """Planar extent for the lattice: configured bounds, else region, else points.

    A point extent with no width or height (one record, or records on one
    meridian / parallel) is widened to at least one cell around its centre.
    """
    if bounds is not None:
        return tuple(bounds)
    if region is not None:
        return tuple(region.bounds)
    if points.empty:
        raise SystemExit(
            "No occurrence records left after loading and filtering; "
            "nothing to lay a grid over. Set grid.bounds or a boundary to get an empty table."
        )

    xmin, ymin, xmax, ymax = (float(v) for v in points.total_bounds)
    if xmax > xmin and ymax > ymin:
        return (xmin, ymin, xmax, ymax)

    w, h = cell_size
    cx = (xmin + xmax) / 2.0
    cy = (ymin + ymax) / 2.0
    padded = union_bbox([(xmin, ymin, xmax, ymax), (cx - w / 2.0, cy - h / 2.0, cx + w / 2.0, cy + h / 2.0)])
    print(f"  - warning: occurrence extent has no area; padded to {format_bbox(padded, precision=0)}")
    return padded


def build_enriched_table(richness: gpd.GeoDataFrame, climate: pd.DataFrame) -> gpd.GeoDataFrame:
    """Left-join climate columns onto the richness table by tile_id, sorted by tile_id."""
    climate = climate.copy()
    if climate.index.name == "tile_id":
        climate = climate.reset_index()
    climate["tile_id"] = climate["tile_id"].astype("int64")
    layer_cols = [c for c in climate.columns if c != "tile_id"]
    out = richness.astype({"tile_id": "int64"}).merge(climate, on="tile_id", how="left")
    out = out.sort_values("tile_id", kind="mergesort").reset_index(drop=True)
    cols = [c for c in out.columns if c != "geometry"] + ["geometry"]
    out = gpd.GeoDataFrame(out[cols], geometry="geometry", crs=richness.crs)
    for c in layer_cols:
        out[c] = out[c].astype("float64")
    return out


def write_outputs(
    table: gpd.GeoDataFrame,
    *,
    out_gpkg: Optional[Path] = None,
    out_csv: Optional[Path] = None,
    layer: str = DEFAULT_GPKG_LAYER,
) -> None:
    """Write the enriched table to GeoPackage and/or CSV (geometry as WKT)."""
    if out_gpkg:
        out_gpkg = Path(out_gpkg)
        out_gpkg.parent.mkdir(parents=True, exist_ok=True)
        table.to_file(out_gpkg, layer=layer, driver="GPKG")
        print(f"Wrote {len(table)} tiles -> {out_gpkg} (layer={layer})")
    if out_csv:
        out_csv = Path(out_csv)
        out_csv.parent.mkdir(parents=True, exist_ok=True)
        flat = pd.DataFrame(table.drop(columns="geometry"))
        flat["geometry"] = table.geometry.to_wkt()
        flat.to_csv(out_csv, index=False)
        print(f"Wrote {len(table)} tiles -> {out_csv}")


def run_pipeline(config: PipelineConfig, *, write: bool = True) -> PipelineResult:
    """Run every stage for one config; see module docstring."""
    diag = Diagnostics()

    # --- Occurrences ---
    occ, n_missing = load_occurrences(
        config.occurrences_path,
        species_col=config.species_col,
        lon_col=config.lon_col,
        lat_col=config.lat_col,
        country_col=config.country_col,
        elevation_col=config.elevation_col,
        taxon_column=config.taxon_column,
        taxon_values=config.taxon_values,
        sep=config.sep,
    )
    diag.n_records = len(occ)
    diag.n_missing_coords = n_missing

    # --- Projection ---
    crs = laea_crs(config.lat_0, config.lon_0)
    points = project_points(occ, crs)

    # --- Bounding region ---
    region = None
    if config.boundary_path is not None:
        boundary = load_boundary(
            config.boundary_path,
            name_field=config.boundary_name_field,
            names=config.boundary_names,
            layer=config.boundary_layer,
        )
        boundary = project_boundary(boundary, crs)
        region = boundary.geometry.iloc[0]

    bounds = resolve_grid_bounds(points, config.cell_size, bounds=config.bounds, region=region)
    print(f"[GRID] Bounds (m): {format_bbox(bounds, precision=0)}")

    # --- Tessellation + assignment ---
    lattice = build_lattice(bounds, config.cell_size, config.shape, crs=crs)
    allowed = None
    if region is not None and config.clip_to_boundary:
        allowed = tessellate(lattice, region=region)["tile_id"].tolist()

    assignment = assign_points(points["x"].to_numpy(), points["y"].to_numpy(), lattice, allowed=allowed)
    diag.n_assigned = assignment.n_assigned
    diag.n_unassigned = assignment.n_unassigned
    diag.unassigned_index = points.index[assignment.unassigned_index].tolist()

    # --- Richness ---
    richness = compute_richness(
        assignment.tile_ids,
        points["species"],
        lattice,
        chunk_size=config.chunk_size,
        max_workers=config.max_workers,
    )

    # --- Climate ---
    layers = [RasterLayer(name=lyr.name, path=lyr.path, band=lyr.band) for lyr in config.layers]
    climate, empties = extract_zonal_climate(layers, lattice, richness["tile_id"].tolist())
    diag.empty_zonal = empties

    table = build_enriched_table(richness, climate)

    if write:
        write_outputs(table, out_gpkg=config.out_gpkg, out_csv=config.out_csv, layer=config.gpkg_layer)

    print("[PIPELINE] Done")
    for line in diag.summary().splitlines():
        print(f"  - {line}")
    return PipelineResult(table=table, lattice=lattice, diagnostics=diag)

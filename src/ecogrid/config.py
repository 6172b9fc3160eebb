#!/usr/bin/env python3
"""ecogrid.config

Shared configuration utilities for the ecogrid pipeline.

This module provides the YAML loading and bbox helpers used by
ecogrid.pipeline, plus the PipelineConfig structure that describes one run.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Missing required keys raise ValueError naming the key.
- All functions are pure (no side effects on import).

Example pipeline YAML:

    occurrences:
      path: data/raw/gbif_amphibia.csv
      taxon: {column: class, values: [Amphibia]}
    boundary:
      path: data/raw/boundaries/ne_110m_admin_0_countries.shp
      name_field: CONTINENT
      names: [Europe]
    projection:
      lat_0: 52
      lon_0: 10
    grid:
      shape: hexagon
      cell_size: 100000
      clip_to_boundary: true
    climate:
      layers:
        - {name: bio1, path: data/raw/wc2.1_10m_bio_1.tif}
    output:
      gpkg: data/processed/richness_grid.gpkg
      csv: data/processed/richness_grid.csv
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast, before any data is read.
    """
    path = Path(path)
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def coerce_bbox(x: Any) -> Optional[Tuple[float, float, float, float]]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid or missing.
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
            return (xmin, ymin, xmax, ymax)
        except (TypeError, ValueError):
            return None
    return None


def union_bbox(
    bboxes: Iterable[Tuple[float, float, float, float]]
) -> Optional[Tuple[float, float, float, float]]:
    """Compute the bounding box that contains all input bboxes.

    Returns None if input is empty.
    """
    bboxes = list(bboxes)
    if not bboxes:
        return None
    xmin = min(b[0] for b in bboxes)
    ymin = min(b[1] for b in bboxes)
    xmax = max(b[2] for b in bboxes)
    ymax = max(b[3] for b in bboxes)
    return (xmin, ymin, xmax, ymax)


def format_bbox(b: Tuple[float, float, float, float], precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
# Column names follow the GBIF simple occurrence download.

DEFAULT_PIPELINE_YAML = Path("config/pipeline.yaml")

DEFAULT_SPECIES_COL = "species"
DEFAULT_LON_COL = "decimalLongitude"
DEFAULT_LAT_COL = "decimalLatitude"
DEFAULT_COUNTRY_COL = "countryCode"
DEFAULT_ELEVATION_COL = "elevation"

DEFAULT_CELL_SIZE = 500_000.0
DEFAULT_SHAPE = "square"
DEFAULT_GPKG_LAYER = "richness"


# -----------------------------------------------------------------------------
# Pipeline config
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class LayerSpec:
    name: str
    path: Path
    band: int = 1


@dataclass(frozen=True)
class PipelineConfig:
    """Everything one pipeline run needs, resolved from YAML."""

    occurrences_path: Path
    lat_0: float
    lon_0: float
    species_col: str = DEFAULT_SPECIES_COL
    lon_col: str = DEFAULT_LON_COL
    lat_col: str = DEFAULT_LAT_COL
    country_col: Optional[str] = DEFAULT_COUNTRY_COL
    elevation_col: Optional[str] = DEFAULT_ELEVATION_COL
    sep: Optional[str] = ","
    taxon_column: Optional[str] = None
    taxon_values: Tuple[str, ...] = ()
    boundary_path: Optional[Path] = None
    boundary_layer: Optional[str] = None
    boundary_name_field: Optional[str] = None
    boundary_names: Tuple[str, ...] = ()
    bounds: Optional[Tuple[float, float, float, float]] = None
    shape: str = DEFAULT_SHAPE
    cell_size: Tuple[float, float] = (DEFAULT_CELL_SIZE, DEFAULT_CELL_SIZE)
    clip_to_boundary: bool = False
    layers: Tuple[LayerSpec, ...] = field(default_factory=tuple)
    chunk_size: Optional[int] = None
    max_workers: Optional[int] = None
    out_gpkg: Optional[Path] = None
    out_csv: Optional[Path] = None
    gpkg_layer: str = DEFAULT_GPKG_LAYER


def _require(section: Dict[str, Any], key: str, where: str) -> Any:
    if key not in section or section[key] is None:
        raise ValueError(f"Pipeline config missing required key: {where}.{key}")
    return section[key]


def _section(data: Dict[str, Any], name: str, required: bool = False) -> Dict[str, Any]:
    sec = data.get(name)
    if sec is None:
        if required:
            raise ValueError(f"Pipeline config missing required section: {name}")
        return {}
    if not isinstance(sec, dict):
        raise ValueError(f"Pipeline config section '{name}' must be a mapping")
    return sec


def _as_tuple(x: Any) -> Tuple[str, ...]:
    if x is None:
        return ()
    if isinstance(x, (list, tuple)):
        return tuple(str(v) for v in x)
    return (str(x),)


def parse_cell_size(x: Any) -> Tuple[float, float]:
    """Accept a single number (square cells) or a [width, height] pair."""
    if isinstance(x, (list, tuple)):
        if len(x) != 2:
            raise ValueError(f"cell_size must be a number or [width, height], got {x!r}")
        return (float(x[0]), float(x[1]))
    return (float(x), float(x))


def _optional_path(x: Any) -> Optional[Path]:
    return Path(x) if x else None


def pipeline_config_from_dict(data: Dict[str, Any]) -> PipelineConfig:
    """Build a PipelineConfig from an already-parsed YAML mapping."""
    occ = _section(data, "occurrences", required=True)
    proj = _section(data, "projection", required=True)
    boundary = _section(data, "boundary")
    grid = _section(data, "grid")
    climate = _section(data, "climate")
    output = _section(data, "output")

    taxon = occ.get("taxon") or {}
    if not isinstance(taxon, dict):
        raise ValueError("occurrences.taxon must be a mapping with 'column' and 'values'")

    layers: List[LayerSpec] = []
    for i, entry in enumerate(climate.get("layers") or []):
        if not isinstance(entry, dict):
            raise ValueError(f"climate.layers[{i}] must be a mapping")
        layers.append(
            LayerSpec(
                name=str(_require(entry, "name", f"climate.layers[{i}]")),
                path=Path(_require(entry, "path", f"climate.layers[{i}]")),
                band=int(entry.get("band", 1)),
            )
        )

    names = [lyr.name for lyr in layers]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValueError(f"Duplicate climate layer names: {dupes}")

    return PipelineConfig(
        occurrences_path=Path(_require(occ, "path", "occurrences")),
        lat_0=float(_require(proj, "lat_0", "projection")),
        lon_0=float(_require(proj, "lon_0", "projection")),
        species_col=str(occ.get("species_col", DEFAULT_SPECIES_COL)),
        lon_col=str(occ.get("lon_col", DEFAULT_LON_COL)),
        lat_col=str(occ.get("lat_col", DEFAULT_LAT_COL)),
        country_col=occ.get("country_col", DEFAULT_COUNTRY_COL),
        elevation_col=occ.get("elevation_col", DEFAULT_ELEVATION_COL),
        sep=occ.get("sep", ","),
        taxon_column=taxon.get("column"),
        taxon_values=_as_tuple(taxon.get("values", taxon.get("value"))),
        boundary_path=_optional_path(boundary.get("path")),
        boundary_layer=boundary.get("layer"),
        boundary_name_field=boundary.get("name_field"),
        boundary_names=_as_tuple(boundary.get("names")),
        bounds=coerce_bbox(grid.get("bounds")),
        shape=str(grid.get("shape", DEFAULT_SHAPE)),
        cell_size=parse_cell_size(grid.get("cell_size", DEFAULT_CELL_SIZE)),
        clip_to_boundary=bool(grid.get("clip_to_boundary", False)),
        layers=tuple(layers),
        chunk_size=grid.get("chunk_size"),
        max_workers=grid.get("max_workers"),
        out_gpkg=_optional_path(output.get("gpkg")),
        out_csv=_optional_path(output.get("csv")),
        gpkg_layer=str(output.get("layer", DEFAULT_GPKG_LAYER)),
    )


def load_pipeline_config(path: Path = DEFAULT_PIPELINE_YAML) -> PipelineConfig:
    """Load and validate a pipeline YAML file."""
    return pipeline_config_from_dict(load_yaml(Path(path)))

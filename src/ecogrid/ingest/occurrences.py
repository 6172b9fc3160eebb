#!/usr/bin/env python3
"""occurrences.py

Load a species occurrence table (GBIF-style CSV/TSV) into a uniform frame.

The loader:
- Renames source columns to canonical names (species, longitude, latitude,
  country, elevation)
- Optionally filters to a taxon of interest (e.g. class == Amphibia)
- Drops rows with missing coordinates and reports how many went
- Leaves out-of-range coordinates alone; the reprojector rejects them with
  the offending record identified

Called by ecogrid.pipeline.run_pipeline().
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

import pandas as pd

from ecogrid.config import (
    DEFAULT_COUNTRY_COL,
    DEFAULT_ELEVATION_COL,
    DEFAULT_LAT_COL,
    DEFAULT_LON_COL,
    DEFAULT_SPECIES_COL,
)

CANONICAL_COLUMNS = ["species", "longitude", "latitude", "country", "elevation"]


@dataclass(frozen=True)
class OccurrenceRecord:
    species: Optional[str]
    longitude: float
    latitude: float
    country: Optional[str] = None
    elevation: Optional[float] = None


def filter_taxon(df: pd.DataFrame, column: str, values: Sequence[str]) -> pd.DataFrame:
    """Keep rows whose taxon column matches any of values (case-insensitive)."""
    if column not in df.columns:
        raise ValueError(f"Taxon column '{column}' not found. Available columns: {list(df.columns)}")
    wanted = {str(v).strip().lower() for v in values}
    keep = df[column].astype("string").str.strip().str.lower().isin(wanted)
    return df[keep.fillna(False)]


def _clean_species(s: pd.Series) -> pd.Series:
    s = s.astype("string").str.strip()
    return s.mask(s == "")


def load_occurrences(
    path: Path,
    *,
    species_col: str = DEFAULT_SPECIES_COL,
    lon_col: str = DEFAULT_LON_COL,
    lat_col: str = DEFAULT_LAT_COL,
    country_col: Optional[str] = DEFAULT_COUNTRY_COL,
    elevation_col: Optional[str] = DEFAULT_ELEVATION_COL,
    taxon_column: Optional[str] = None,
    taxon_values: Sequence[str] = (),
    sep: Optional[str] = ",",
) -> Tuple[pd.DataFrame, int]:
    """Read an occurrence table and return (records, n_dropped_missing_coords).

    Parameters
    ----------
    path : Path
        CSV or TSV file. GBIF "simple" downloads are tab-separated; pass
        sep="\\t", or sep=None to let pandas sniff the delimiter.
    species_col, lon_col, lat_col : str
        Required source columns.
    country_col, elevation_col : str | None
        Optional metadata columns; filled with missing values if absent.
    taxon_column, taxon_values
        If both are given, keep only matching rows (see filter_taxon).

    Returns
    -------
    (DataFrame, int)
        Frame with CANONICAL_COLUMNS (plus the taxon column, if used) and a
        fresh RangeIndex; number of rows dropped for missing coordinates.
    """
    path = Path(path)
    if not path.exists():
        raise SystemExit(f"Occurrence file not found: {path}")

    read_kwargs = {"sep": sep, "low_memory": False} if sep is not None else {"sep": None, "engine": "python"}
    raw = pd.read_csv(path, **read_kwargs)

    required = [species_col, lon_col, lat_col]
    missing = [c for c in required if c not in raw.columns]
    if missing:
        raise ValueError(f"Missing required occurrence columns: {missing}. Available: {list(raw.columns)}")

    if taxon_column and taxon_values:
        n_before = len(raw)
        raw = filter_taxon(raw, taxon_column, taxon_values)
        print(f"[OCC] Taxon filter {taxon_column} in {list(taxon_values)}: {len(raw)}/{n_before} rows kept")

    out = pd.DataFrame(
        {
            "species": _clean_species(raw[species_col]),
            "longitude": pd.to_numeric(raw[lon_col], errors="coerce"),
            "latitude": pd.to_numeric(raw[lat_col], errors="coerce"),
            "country": raw[country_col].astype("string") if country_col in raw.columns else pd.NA,
            "elevation": pd.to_numeric(raw[elevation_col], errors="coerce") if elevation_col in raw.columns else float("nan"),
        }
    )
    if taxon_column and taxon_column in raw.columns and taxon_column not in out.columns:
        out[taxon_column] = raw[taxon_column].values

    has_coords = out["longitude"].notna() & out["latitude"].notna()
    n_dropped = int((~has_coords).sum())
    out = out[has_coords].reset_index(drop=True)

    print(f"[OCC] Loaded {len(out)} records from {path.name}")
    if n_dropped:
        print(f"  - warning: dropped {n_dropped} records with missing coordinates")

    return out, n_dropped


def iter_records(df: pd.DataFrame) -> Iterator[OccurrenceRecord]:
    """Yield OccurrenceRecord values from a frame returned by load_occurrences()."""
    for row in df.itertuples(index=False):
        species = None if pd.isna(row.species) else str(row.species)
        country = None if pd.isna(row.country) else str(row.country)
        elevation = None if pd.isna(row.elevation) else float(row.elevation)
        yield OccurrenceRecord(
            species=species,
            longitude=float(row.longitude),
            latitude=float(row.latitude),
            country=country,
            elevation=elevation,
        )

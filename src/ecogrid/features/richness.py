#!/usr/bin/env python3
"""richness.py

Species richness per tile: the number of distinct species among the
occurrences assigned to it.

Aggregation is a set union, not a sort: each chunk of points produces a
partial {tile_id: set(species)} mapping and the partials are merged. Chunks
can run on a thread pool and the merged result equals the single-pass one.

Rules:
- Missing species names are excluded from the distinct count
- Unassigned points (tile id -1) are excluded
- Tiles with no valid species are omitted, never emitted with richness 0
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Set, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from ecogrid.geo.tessellate import Lattice, tiles_for

SpeciesSets = Dict[int, Set[str]]

RICHNESS_COLUMNS = ["tile_id", "row", "col", "richness", "n_records", "geometry"]


def partial_species_sets(tile_ids, species) -> SpeciesSets:
    """Map tile id -> set of species names for one chunk of points."""
    frame = pd.DataFrame(
        {
            "tile_id": np.asarray(tile_ids, dtype=np.int64),
            "species": pd.Series(species, dtype="object").to_numpy(),
        }
    )
    frame = frame[(frame["tile_id"] >= 0) & frame["species"].notna()]
    return {int(tid): set(group) for tid, group in frame.groupby("tile_id")["species"]}


def merge_species_sets(partials: Iterable[SpeciesSets]) -> SpeciesSets:
    """Union partial species sets tile by tile."""
    merged: SpeciesSets = {}
    for part in partials:
        for tid, names in part.items():
            merged.setdefault(tid, set()).update(names)
    return merged


def _chunks(tile_ids: np.ndarray, species: np.ndarray, size: int) -> List[Tuple[np.ndarray, np.ndarray]]:
    return [(tile_ids[i:i + size], species[i:i + size]) for i in range(0, tile_ids.size, size)]


def species_sets(
    tile_ids,
    species,
    *,
    chunk_size: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> SpeciesSets:
    """Species sets for all points, optionally in parallel chunks."""
    ids = np.asarray(tile_ids, dtype=np.int64)
    names = pd.Series(species, dtype="object").to_numpy()
    if ids.shape != names.shape:
        raise ValueError(f"tile_ids and species differ in length: {ids.size} vs {names.size}")

    if not chunk_size or chunk_size >= ids.size:
        return partial_species_sets(ids, names)

    chunks = _chunks(ids, names, int(chunk_size))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        partials = list(executor.map(lambda c: partial_species_sets(*c), chunks))
    return merge_species_sets(partials)


def compute_richness(
    tile_ids,
    species,
    lattice: Lattice,
    *,
    chunk_size: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> gpd.GeoDataFrame:
    """One RichnessRecord per tile with at least one valid species.

    Args:
        tile_ids: Tile id per point (-1 for unassigned), from assign_points()
        species: Species name per point (missing values allowed)
        lattice: Lattice the ids refer to; used to build tile geometries
        chunk_size: If set, aggregate in chunks of this many points
        max_workers: Thread pool size for chunked aggregation

    Returns:
        GeoDataFrame sorted by tile_id with columns tile_id, row, col,
        richness (distinct species), n_records (all assigned points in the
        tile, named or not) and geometry.
    """
    sets = species_sets(tile_ids, species, chunk_size=chunk_size, max_workers=max_workers)

    ids = np.asarray(tile_ids, dtype=np.int64)
    assigned = ids[ids >= 0]
    uniq, counts = np.unique(assigned, return_counts=True)
    n_records = dict(zip(uniq.tolist(), counts.tolist()))

    occupied = sorted(tid for tid, names in sets.items() if names)
    tiles = tiles_for(lattice, occupied)
    if tiles.empty:
        print("[RICHNESS] No tiles with valid species records")
        empty = tiles[["tile_id", "row", "col", "geometry"]].copy()
        empty["richness"] = pd.Series(dtype="int64")
        empty["n_records"] = pd.Series(dtype="int64")
        return empty[RICHNESS_COLUMNS]

    tiles["richness"] = [len(sets[tid]) for tid in tiles["tile_id"]]
    tiles["n_records"] = [n_records[tid] for tid in tiles["tile_id"]]
    out = tiles[RICHNESS_COLUMNS].reset_index(drop=True)

    print(
        f"[RICHNESS] {len(out)} occupied tiles, "
        f"richness {int(out['richness'].min())}-{int(out['richness'].max())}"
    )
    return out

#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from ecogrid.features import richness as rich
from ecogrid.geo.tessellate import build_lattice


LATTICE = build_lattice((0, 0, 1000, 1000), 500, "square")


def _by_tile(gdf):
    return {int(r.tile_id): (int(r.richness), int(r.n_records)) for r in gdf.itertuples()}


def test_distinct_species_per_tile():
    ids = [0, 0, 0, 1, 1, -1]
    species = ["Bufo bufo", "Rana temporaria", "Bufo bufo", "Bufo bufo", None, "Hyla arborea"]
    out = rich.compute_richness(ids, species, LATTICE)
    assert _by_tile(out) == {0: (2, 3), 1: (1, 2)}
    assert out.columns.tolist() == rich.RICHNESS_COLUMNS


def test_tiles_without_valid_species_are_omitted():
    ids = [0, 4, 4]
    species = ["Bufo bufo", None, pd.NA]
    out = rich.compute_richness(ids, species, LATTICE)
    assert out["tile_id"].tolist() == [0]
    assert (out["richness"] >= 1).all()


def test_richness_never_exceeds_record_count():
    rng = np.random.default_rng(1)
    ids = rng.integers(-1, 9, 500)
    species = rng.choice(["a", "b", "c", "d", "e", None], 500)
    out = rich.compute_richness(ids, species, LATTICE)
    assert (out["richness"] <= out["n_records"]).all()


def test_new_species_adds_one_duplicate_adds_nothing():
    ids = [3, 3]
    species = ["a", "b"]
    base = _by_tile(rich.compute_richness(ids, species, LATTICE))[3][0]

    more = _by_tile(rich.compute_richness(ids + [3], species + ["c"], LATTICE))[3][0]
    same = _by_tile(rich.compute_richness(ids + [3], species + ["a"], LATTICE))[3][0]
    assert more == base + 1
    assert same == base


def test_chunked_aggregation_matches_single_pass():
    rng = np.random.default_rng(5)
    ids = rng.integers(-1, 9, 1000)
    species = rng.choice([f"sp{i}" for i in range(40)] + [None], 1000)
    single = rich.compute_richness(ids, species, LATTICE)
    chunked = rich.compute_richness(ids, species, LATTICE, chunk_size=37, max_workers=4)
    pd.testing.assert_frame_equal(
        pd.DataFrame(single.drop(columns="geometry")),
        pd.DataFrame(chunked.drop(columns="geometry")),
    )
    assert list(single.geometry.to_wkb()) == list(chunked.geometry.to_wkb())


def test_merge_species_sets_is_a_union():
    a = {0: {"x", "y"}, 1: {"z"}}
    b = {0: {"y", "w"}, 2: {"q"}}
    merged = rich.merge_species_sets([a, b])
    assert merged == {0: {"x", "y", "w"}, 1: {"z"}, 2: {"q"}}


def test_partial_species_sets_drops_missing_and_unassigned():
    sets = rich.partial_species_sets([0, -1, 2, 2], ["a", "b", None, "c"])
    assert sets == {0: {"a"}, 2: {"c"}}


def test_empty_input_gives_empty_table():
    out = rich.compute_richness([-1, -1], ["a", "b"], LATTICE)
    assert out.empty
    assert out.columns.tolist() == rich.RICHNESS_COLUMNS


def test_geometry_is_the_tile_polygon():
    out = rich.compute_richness([4], ["a"], LATTICE)
    assert out.geometry.iloc[0].bounds == (500.0, 500.0, 1000.0, 1000.0)

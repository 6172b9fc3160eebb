#!/usr/bin/env python3

from __future__ import annotations

import itertools
import math
import sys
import types
from pathlib import Path

import pytest
import shapely
from shapely.geometry import box

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from ecogrid.errors import TessellationConfigError
from ecogrid.geo import tessellate as ts


BOUNDS = (0.0, 0.0, 1000.0, 1000.0)


def test_square_lattice_dimensions():
    lat = ts.build_lattice(BOUNDS, 500, "square")
    assert (lat.nrows, lat.ncols) == (3, 3)
    assert lat.n_tiles == 9
    assert lat.extent == (0.0, 0.0, 1500.0, 1500.0)


def test_tile_id_and_row_col_are_inverse():
    lat = ts.build_lattice((0.0, 0.0, 1000.0, 2000.0), 500, "square")
    assert lat.tile_id(2, 1) == 2 * lat.ncols + 1
    for tid in range(lat.n_tiles):
        row, col = lat.row_col(tid)
        assert lat.contains_index(row, col)
        assert lat.tile_id(row, col) == tid


def test_rectangular_cells():
    lat = ts.build_lattice(BOUNDS, (400, 250), "square")
    assert (lat.ncols, lat.nrows) == (3, 5)
    poly = lat.polygon(1, 2)
    assert poly.bounds == (800.0, 250.0, 1200.0, 500.0)


def test_hexagon_lattice_dimensions_and_area():
    lat = ts.build_lattice((0, 0, 5000, 5000), 1000, "hexagon")
    assert lat.ncols == 6
    assert lat.nrows == 7
    assert lat.row_spacing == pytest.approx(1000 * math.sqrt(3) / 2)
    hexagon = lat.polygon(3, 2)
    assert hexagon.area == pytest.approx(math.sqrt(3) / 2 * 1000**2)
    # flat-to-flat width
    minx, _, maxx, _ = hexagon.bounds
    assert maxx - minx == pytest.approx(1000)


def test_odd_rows_are_offset_by_half_a_cell():
    lat = ts.build_lattice((0, 0, 5000, 5000), 1000, "hexagon")
    assert lat.center(0, 1) == pytest.approx((1000.0, 0.0))
    assert lat.center(1, 1)[0] == pytest.approx(1500.0)


@pytest.mark.parametrize("shape", ["square", "hexagon"])
def test_tiles_cover_bounding_region(shape):
    bounds = (10.0, -20.0, 3210.0, 2480.0)
    lat = ts.build_lattice(bounds, 700, shape)
    tiles = ts.tessellate(lat)
    union = shapely.union_all(tiles.geometry.to_numpy())
    gap = box(*bounds).difference(union)
    assert gap.area < 1e-6 * box(*bounds).area


@pytest.mark.parametrize("shape", ["square", "hexagon"])
def test_tile_interiors_are_disjoint(shape):
    lat = ts.build_lattice((0, 0, 2000, 2000), 700, shape)
    tiles = ts.tessellate(lat)
    cell_area = tiles.geometry.iloc[0].area
    for a, b in itertools.combinations(tiles.geometry, 2):
        assert a.intersection(b).area < 1e-6 * cell_area


@pytest.mark.parametrize("shape", ["square", "hexagon"])
def test_tessellation_is_deterministic(shape):
    lat_a = ts.build_lattice(BOUNDS, 300, shape)
    lat_b = ts.build_lattice(BOUNDS, 300, shape)
    a = ts.tessellate(lat_a)
    b = ts.tessellate(lat_b)
    assert a["tile_id"].tolist() == b["tile_id"].tolist()
    assert a["tile_id"].tolist() == sorted(a["tile_id"].tolist())
    assert list(a.geometry.to_wkb()) == list(b.geometry.to_wkb())


def test_iter_tiles_is_lazy_and_row_major():
    lat = ts.build_lattice(BOUNDS, 500, "square")
    gen = ts.iter_tiles(lat)
    assert isinstance(gen, types.GeneratorType)
    first = next(gen)
    second = next(gen)
    assert (first.tile_id, first.row, first.col) == (0, 0, 0)
    assert (second.tile_id, second.row, second.col) == (1, 0, 1)


def test_tessellate_keeps_only_tiles_touching_region():
    lat = ts.build_lattice(BOUNDS, 500, "square")
    tiles = ts.tessellate(lat, region=box(10, 10, 400, 400))
    assert tiles["tile_id"].tolist() == [0]

    tiles = ts.tessellate(lat, region=box(600, 100, 1400, 400))
    assert tiles["tile_id"].tolist() == [1, 2]


def test_tiles_for_builds_requested_tiles_sorted():
    lat = ts.build_lattice(BOUNDS, 500, "square")
    tiles = ts.tiles_for(lat, [4, 0, 4])
    assert tiles["tile_id"].tolist() == [0, 4]
    assert tiles.geometry.iloc[1].equals(box(500, 500, 1000, 1000))


def test_tiles_for_empty_gives_empty_frame():
    lat = ts.build_lattice(BOUNDS, 500, "square")
    tiles = ts.tiles_for(lat, [])
    assert tiles.empty
    assert "tile_id" in tiles.columns


@pytest.mark.parametrize(
    "bounds, cell_size, shape",
    [
        (BOUNDS, 0, "square"),
        (BOUNDS, -5, "square"),
        (BOUNDS, float("nan"), "square"),
        (BOUNDS, (100, 0), "square"),
        (BOUNDS, 100, "triangle"),
        (BOUNDS, (100, 200), "hexagon"),
        ((0, 0, 0, 1000), 100, "square"),
        ((0, 0, 1000, float("inf")), 100, "square"),
        ((5, 5, 1, 1), 100, "square"),
    ],
)
def test_bad_config_raises(bounds, cell_size, shape):
    with pytest.raises(TessellationConfigError):
        ts.build_lattice(bounds, cell_size, shape)


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        ts.build_lattice(BOUNDS, 0)

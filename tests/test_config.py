#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from ecogrid import config as cfg


PIPELINE_YAML = """
occurrences:
  path: data/raw/occ.csv
  sep: "\\t"
  taxon: {column: class, values: [Amphibia]}
projection:
  lat_0: 52
  lon_0: 10
grid:
  shape: hexagon
  cell_size: 100000
climate:
  layers:
    - {name: bio1, path: data/raw/bio1.tif}
    - {name: bio12, path: data/raw/bio12.tif, band: 1}
output:
  csv: out/richness.csv
"""


def test_load_pipeline_config(tmp_path):
    path = tmp_path / "pipeline.yaml"
    path.write_text(PIPELINE_YAML)
    conf = cfg.load_pipeline_config(path)
    assert conf.occurrences_path == Path("data/raw/occ.csv")
    assert conf.sep == "\t"
    assert conf.taxon_column == "class"
    assert conf.taxon_values == ("Amphibia",)
    assert (conf.lat_0, conf.lon_0) == (52.0, 10.0)
    assert conf.shape == "hexagon"
    assert conf.cell_size == (100000.0, 100000.0)
    assert [lyr.name for lyr in conf.layers] == ["bio1", "bio12"]
    assert conf.out_csv == Path("out/richness.csv")
    assert conf.out_gpkg is None
    assert conf.boundary_path is None


def test_defaults_from_minimal_config():
    conf = cfg.pipeline_config_from_dict(
        {"occurrences": {"path": "occ.csv"}, "projection": {"lat_0": 0, "lon_0": 0}}
    )
    assert conf.species_col == cfg.DEFAULT_SPECIES_COL
    assert conf.lon_col == "decimalLongitude"
    assert conf.shape == "square"
    assert conf.cell_size == (cfg.DEFAULT_CELL_SIZE, cfg.DEFAULT_CELL_SIZE)
    assert conf.layers == ()


def test_missing_section_or_key():
    with pytest.raises(ValueError, match="projection"):
        cfg.pipeline_config_from_dict({"occurrences": {"path": "occ.csv"}})
    with pytest.raises(ValueError, match="projection.lon_0"):
        cfg.pipeline_config_from_dict({"occurrences": {"path": "occ.csv"}, "projection": {"lat_0": 1}})


def test_duplicate_layer_names():
    data = {
        "occurrences": {"path": "occ.csv"},
        "projection": {"lat_0": 0, "lon_0": 0},
        "climate": {"layers": [{"name": "t", "path": "a.tif"}, {"name": "t", "path": "b.tif"}]},
    }
    with pytest.raises(ValueError, match="Duplicate"):
        cfg.pipeline_config_from_dict(data)


def test_parse_cell_size():
    assert cfg.parse_cell_size(250) == (250.0, 250.0)
    assert cfg.parse_cell_size([100, 200]) == (100.0, 200.0)
    with pytest.raises(ValueError):
        cfg.parse_cell_size([1, 2, 3])


def test_load_yaml_strict(tmp_path):
    with pytest.raises(SystemExit):
        cfg.load_yaml(tmp_path / "missing.yaml")
    bad = tmp_path / "list.yaml"
    bad.write_text("- a\n- b\n")
    with pytest.raises(SystemExit):
        cfg.load_yaml(bad)


def test_bbox_helpers():
    assert cfg.coerce_bbox([0, 1, 2, 3]) == (0.0, 1.0, 2.0, 3.0)
    assert cfg.coerce_bbox([0, 1, 2]) is None
    assert cfg.coerce_bbox(["a", 1, 2, 3]) is None
    assert cfg.union_bbox([(0, 0, 1, 1), (-1, 0.5, 0.5, 2)]) == (-1, 0, 1, 2)
    assert cfg.union_bbox([]) is None
    assert cfg.format_bbox((0, 0, 1, 1), precision=1) == "[0.0, 0.0, 1.0, 1.0]"

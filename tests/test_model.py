#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

# Ensure we can import from src/ without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from ecogrid.model.fit_richness import build_formula, fit_richness_models, summarize_models


def _table(n=200, seed=0):
    rng = np.random.default_rng(seed)
    bio1 = rng.uniform(0.0, 25.0, n)
    bio12 = rng.uniform(300.0, 1500.0, n)
    richness = rng.poisson(np.exp(0.5 + 0.08 * bio1))
    return pd.DataFrame({"tile_id": np.arange(n), "richness": richness, "bio1": bio1, "bio12": bio12})


def test_build_formula_quotes_names():
    assert build_formula(["bio1", "tmean-01"]) == 'Q("richness") ~ Q("bio1") + Q("tmean-01")'


def test_poisson_glm_recovers_positive_temperature_effect():
    models = fit_richness_models(_table(), ["bio1", "bio12"])
    assert models.n_obs == 200
    assert models.n_dropped == 0
    coef = models.glm.params['Q("bio1")']
    assert coef == pytest.approx(0.08, abs=0.03)
    assert models.ols.params['Q("bio1")'] > 0


def test_rows_with_missing_covariates_are_dropped():
    table = _table()
    table.loc[[0, 5, 9], "bio12"] = np.nan
    models = fit_richness_models(table, ["bio1", "bio12"])
    assert models.n_dropped == 3
    assert models.n_obs == 197


def test_summarize_models():
    models = fit_richness_models(_table(), ["bio1"])
    summary = summarize_models(models)
    assert summary.columns.tolist() == ["model", "term", "estimate", "std_error", "p_value"]
    assert set(summary["model"]) == {"ols", "poisson_glm"}
    assert len(summary) == 4


def test_bad_inputs():
    table = _table()
    with pytest.raises(ValueError):
        fit_richness_models(table, [])
    with pytest.raises(ValueError, match="bio5"):
        fit_richness_models(table, ["bio5"])
    with pytest.raises(ValueError):
        fit_richness_models(table.head(2), ["bio1", "bio12"])

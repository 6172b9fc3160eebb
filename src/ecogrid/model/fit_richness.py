#!/usr/bin/env python3
"""fit_richness.py

Simple richness ~ climate models on the enriched tile table.

Two fits, mirroring the usual first pass at this question:
- OLS (linear model)
- Poisson GLM with log link (richness is a count)

Rows with missing covariates (tiles without climate coverage) are dropped
and counted. No claims about inference beyond what statsmodels reports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf


@dataclass
class RichnessModels:
    formula: str
    n_obs: int
    n_dropped: int
    ols: Any
    glm: Any


def build_formula(covariates: Sequence[str], response: str = "richness") -> str:
    # Q() keeps layer names like "bio-1" or "tmean_01" usable as terms
    terms = " + ".join(f'Q("{c}")' for c in covariates)
    return f'Q("{response}") ~ {terms}'


def fit_richness_models(
    table: pd.DataFrame,
    covariates: Sequence[str],
    response: str = "richness",
) -> RichnessModels:
    """Fit OLS and Poisson GLM of response on covariates."""
    if not covariates:
        raise ValueError("At least one covariate is required")
    missing = [c for c in [response, *covariates] if c not in table.columns]
    if missing:
        raise ValueError(f"Columns not found in table: {missing}")

    data = pd.DataFrame(table[[response, *covariates]]).astype(float)
    complete = data.dropna()
    n_dropped = len(data) - len(complete)
    if n_dropped:
        print(f"  - warning: dropped {n_dropped} tiles with missing covariates before fitting")
    if len(complete) <= len(covariates) + 1:
        raise ValueError(
            f"Not enough complete rows to fit {len(covariates)} covariates: {len(complete)}"
        )

    formula = build_formula(covariates, response)
    ols = smf.ols(formula, data=complete).fit()
    glm = smf.glm(formula, data=complete, family=sm.families.Poisson()).fit()

    print(f"[MODEL] {formula}: n={len(complete)}, OLS R2={ols.rsquared:.3f}, GLM AIC={glm.aic:.1f}")
    return RichnessModels(formula=formula, n_obs=len(complete), n_dropped=n_dropped, ols=ols, glm=glm)


def summarize_models(models: RichnessModels) -> pd.DataFrame:
    """Tidy coefficient table: model, term, estimate, std_error, p_value."""
    rows = []
    for name, res in (("ols", models.ols), ("poisson_glm", models.glm)):
        for term in res.params.index:
            rows.append(
                {
                    "model": name,
                    "term": term,
                    "estimate": float(res.params[term]),
                    "std_error": float(res.bse[term]),
                    "p_value": float(res.pvalues[term]),
                }
            )
    return pd.DataFrame(rows)

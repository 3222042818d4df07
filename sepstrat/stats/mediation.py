"""Causal mediation analysis (exposure -> mediator -> outcome)."""

from __future__ import annotations

import logging
from typing import Any, Iterable

import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.stats.mediation import Mediation

logger = logging.getLogger(__name__)

FAMILIES = ("binomial", "gaussian")


def mediation_analysis(
    frame: pd.DataFrame,
    exposure: str,
    mediator: str,
    outcome: str,
    covariates: Iterable[str] = (),
    *,
    outcome_family: str = "binomial",
    n_rep: int = 1000,
    seed: int = 0,
) -> dict[str, Any]:
    """Estimate ACME/ADE with an OLS mediator model and a GLM outcome model.

    A non-binary exposure is dichotomised at its median (above = 1). Covariates
    that repeat the exposure, mediator or outcome are dropped.
    """
    if outcome_family not in FAMILIES:
        raise ValueError(f"outcome_family must be one of: {', '.join(FAMILIES)}.")
    roles = (exposure, mediator, outcome)
    if len(set(roles)) < 3:
        raise ValueError("Exposure, mediator and outcome must be distinct columns.")
    covariates = [c for c in dict.fromkeys(covariates) if c not in roles]
    cols = [exposure, mediator, outcome, *covariates]
    missing = [c for c in cols if c not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found: {', '.join(missing)}")
    sub = frame[cols].dropna()
    if sub.shape[0] < 10:
        raise ValueError(f"Too few complete samples for mediation analysis ({sub.shape[0]}).")

    data = pd.DataFrame(index=sub.index)
    x = pd.to_numeric(sub[exposure], errors="coerce")
    threshold = None
    if set(x.unique().tolist()) <= {0, 1}:
        data["x"] = x.astype(float)
    else:
        threshold = float(x.median())
        data["x"] = (x > threshold).astype(float)
        logger.info("Exposure '%s' dichotomised at median %.4g.", exposure, threshold)
    if data["x"].nunique() < 2:
        raise ValueError(f"Exposure '{exposure}' has a single level.")
    data["m"] = pd.to_numeric(sub[mediator], errors="coerce").astype(float)
    data["y"] = pd.to_numeric(sub[outcome], errors="coerce").astype(float)
    if outcome_family == "binomial" and not set(data["y"].unique().tolist()) <= {0.0, 1.0}:
        raise ValueError(f"Outcome '{outcome}' must be binary 0/1 for a binomial model.")

    cov_terms = []
    for i, c in enumerate(covariates):
        name = f"c{i}"
        col = sub[c]
        if pd.api.types.is_numeric_dtype(col) and not pd.api.types.is_bool_dtype(col):
            data[name] = col.astype(float)
            cov_terms.append(name)
        else:
            data[name] = col.astype(str)
            cov_terms.append(f"C({name})")
    rhs = "".join(f" + {t}" for t in cov_terms)

    family = sm.families.Binomial() if outcome_family == "binomial" else sm.families.Gaussian()
    outcome_model = sm.GLM.from_formula(f"y ~ x + m{rhs}", data, family=family)
    mediator_model = sm.OLS.from_formula(f"m ~ x{rhs}", data)

    result = Mediation(outcome_model, mediator_model, "x", "m").fit(
        method="parametric", n_rep=int(n_rep), rng=np.random.default_rng(int(seed))
    )
    table = result.summary().rename(
        columns={
            "Estimate": "estimate",
            "Lower CI bound": "ci_low",
            "Upper CI bound": "ci_high",
            "P-value": "p",
        }
    )
    table.index.name = "effect"
    logger.info(
        "Mediation %s -> %s -> %s on %d samples: ACME=%.4g (p=%.3g)",
        exposure,
        mediator,
        outcome,
        int(data.shape[0]),
        float(table.loc["ACME (average)", "estimate"]),
        float(table.loc["ACME (average)", "p"]),
    )
    return {
        "effects": table.reset_index(),
        "n": int(data.shape[0]),
        "exposure_threshold": threshold,
        "outcome_family": outcome_family,
    }

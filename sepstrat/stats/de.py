"""Linear-model differential expression with empirical-Bayes variance moderation."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import digamma, polygamma

from sepstrat.stats.multitest import bh_fdr

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"


def make_design(
    metadata: pd.DataFrame,
    variables: Iterable[str],
    reference_levels: Mapping[str, object] | None = None,
    *,
    intercept: bool = True,
) -> pd.DataFrame:
    """Design matrix: numeric columns as-is, categorical ones treatment-coded.

    Dummy columns are named `"<variable>_<level>"`; the first sorted level (or
    the one in `reference_levels`) is the baseline.
    """
    refs = dict(reference_levels or {})
    variables = list(variables)
    missing = [v for v in variables if v not in metadata.columns]
    if missing:
        raise KeyError(f"Design variables not found: {', '.join(missing)}")
    sub = metadata[variables]
    na_rows = sub.isna().any(axis=1)
    if bool(na_rows.any()):
        raise ValueError(
            f"{int(na_rows.sum())} samples have missing design values; drop them first."
        )

    design = pd.DataFrame(index=metadata.index)
    if intercept:
        design[INTERCEPT] = 1.0
    for var in variables:
        col = sub[var]
        if pd.api.types.is_bool_dtype(col):
            design[var] = col.astype(float)
        elif pd.api.types.is_numeric_dtype(col):
            design[var] = col.astype(float)
        else:
            levels = sorted(pd.unique(col.astype(str)))
            base = str(refs.get(var, levels[0]))
            if base not in levels:
                raise ValueError(f"Reference level '{base}' not present in '{var}'.")
            for lvl in levels:
                if lvl == base:
                    continue
                design[f"{var}_{lvl}"] = (col.astype(str) == lvl).astype(float)
    return design


def trigamma_inverse(y: float) -> float:
    """Solve trigamma(x) = y by Newton iteration."""
    y = float(y)
    if y <= 0:
        raise ValueError("trigamma_inverse requires y > 0.")
    if y > 1e7:
        return 1.0 / np.sqrt(y)
    if y < 1e-6:
        return 1.0 / y
    x = 0.5 + 1.0 / y
    for _ in range(50):
        tri = float(polygamma(1, x))
        dif = tri * (1.0 - tri / y) / float(polygamma(2, x))
        x += dif
        if -dif / x < 1e-8:
            break
    return float(x)


def fit_f_dist(s2: np.ndarray, df: float) -> tuple[float, float]:
    """Moment estimates `(d0, s0^2)` of a scaled F prior for sample variances."""
    v = np.asarray(s2, dtype=float)
    v = v[np.isfinite(v) & (v > 0)]
    if v.size < 2:
        return float("inf"), float(np.mean(v)) if v.size else float("nan")
    v = np.maximum(v, 1e-5 * np.median(v))
    half = float(df) / 2.0
    e = np.log(v) - float(digamma(half)) + np.log(half)
    emean = float(np.mean(e))
    evar = float(np.var(e, ddof=1)) - float(polygamma(1, half))
    if evar > 0:
        d0 = 2.0 * trigamma_inverse(evar)
        s02 = float(np.exp(emean + float(digamma(d0 / 2.0)) - np.log(d0 / 2.0)))
    else:
        d0 = float("inf")
        s02 = float(np.exp(emean))
    return d0, s02


def moderated_lm(expr: pd.DataFrame, design: pd.DataFrame, coef: str) -> pd.DataFrame:
    """Per-gene OLS with moderated t-statistics for one design coefficient.

    `expr` is samples x genes; rows are matched to `design` by index.
    """
    if coef not in design.columns:
        raise KeyError(f"Coefficient '{coef}' not in design columns {list(design.columns)}.")
    missing = design.index.difference(expr.index)
    if len(missing) > 0:
        raise KeyError(f"{len(missing)} design samples missing from expression data.")
    Y = expr.loc[design.index].to_numpy(dtype=float)
    if not np.all(np.isfinite(Y)):
        raise ValueError("Expression contains NaN/inf values.")
    X = design.to_numpy(dtype=float)
    n, p = X.shape
    if np.linalg.matrix_rank(X) < p:
        raise ValueError("Design matrix is not of full column rank.")
    df_res = n - p
    if df_res < 1:
        raise ValueError("No residual degrees of freedom (need more samples than coefficients).")

    xtx_inv = np.linalg.inv(X.T @ X)
    B = xtx_inv @ X.T @ Y
    resid = Y - X @ B
    s2 = np.sum(resid**2, axis=0) / df_res
    j = list(design.columns).index(coef)
    unscaled = float(xtx_inv[j, j])

    ok = s2 > 1e-12 * max(1.0, float(np.nanmax(np.abs(Y))) ** 2)
    d0, s02 = fit_f_dist(s2[ok], df_res)
    if np.isfinite(d0):
        s2_post = (d0 * s02 + df_res * s2) / (d0 + df_res)
        df_total = min(df_res + d0, float(df_res * max(1, int(ok.sum()))))
    else:
        s2_post = np.full_like(s2, s02)
        df_total = float(df_res * max(1, int(ok.sum())))

    logfc = B[j]
    t = np.full(logfc.shape, np.nan)
    t[ok] = logfc[ok] / np.sqrt(s2_post[ok] * unscaled)
    pvals = np.full(logfc.shape, np.nan)
    pvals[ok] = 2.0 * stats.t.sf(np.abs(t[ok]), df_total)

    out = pd.DataFrame(
        {
            "gene": expr.columns.astype(str),
            "logFC": logfc,
            "AveExpr": Y.mean(axis=0),
            "t": t,
            "P.Value": pvals,
            "adj.P.Val": bh_fdr(pvals),
        }
    )
    logger.info(
        "Moderated linear model for '%s': %d genes, df_residual=%d, prior df=%.3g, %d genes adj.P<0.05",
        coef,
        out.shape[0],
        df_res,
        d0,
        int((out["adj.P.Val"] < 0.05).sum()),
    )
    return out.sort_values("P.Value", kind="mergesort", na_position="last").reset_index(drop=True)


def _complete_metadata(metadata: pd.DataFrame) -> pd.DataFrame:
    complete = metadata.dropna()
    dropped = int(metadata.shape[0] - complete.shape[0])
    if dropped:
        logger.info("Dropped %d samples with missing model covariates.", dropped)
    return complete


def score_de(
    expr: pd.DataFrame, score: pd.Series, covariates: pd.DataFrame | None = None
) -> pd.DataFrame:
    """Genes associated with a continuous score (log-expression change per unit score)."""
    name = str(score.name or "score")
    meta = pd.DataFrame({name: pd.to_numeric(score, errors="coerce")})
    if covariates is not None:
        meta = meta.join(covariates, how="left")
    meta = _complete_metadata(meta.reindex(expr.index.intersection(meta.index)))
    design = make_design(meta, list(meta.columns))
    return moderated_lm(expr, design, name)


def group_de(
    expr: pd.DataFrame,
    groups: pd.Series,
    case: str,
    control: str,
    covariates: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """Two-group contrast `case` vs `control` (positive logFC = higher in case)."""
    labels = groups.astype(str)
    keep = labels.isin([str(case), str(control)])
    meta = pd.DataFrame({"group": labels[keep]})
    for lvl in (str(case), str(control)):
        if not bool((meta["group"] == lvl).any()):
            raise ValueError(f"Group '{lvl}' has no samples.")
    if covariates is not None:
        meta = meta.join(covariates, how="left")
    meta = _complete_metadata(meta.reindex(expr.index.intersection(meta.index)))
    design = make_design(meta, list(meta.columns), reference_levels={"group": str(control)})
    return moderated_lm(expr, design, f"group_{case}")

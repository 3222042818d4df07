"""Platform-specific normalisation for microarray, RNA-seq and qPCR data."""

from __future__ import annotations

import logging
from typing import Iterable

import anndata as ad
import numpy as np
import pandas as pd
import scanpy as sc

logger = logging.getLogger(__name__)


def is_log_scale(values: pd.DataFrame | np.ndarray) -> bool:
    """Quantile heuristic used by GEO2R to decide whether data are already logged."""
    arr = np.asarray(values, dtype=float).ravel()
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        raise ValueError("No finite values to inspect.")
    qx = np.quantile(arr, [0.0, 0.25, 0.5, 0.75, 0.99, 1.0])
    needs_log = (qx[4] > 100.0) or ((qx[5] - qx[0]) > 50.0 and qx[1] > 0.0)
    return not bool(needs_log)


def ensure_log2(expr: pd.DataFrame, offset: float = 1.0) -> pd.DataFrame:
    """log2-transform `expr` unless it already looks log-scaled."""
    if is_log_scale(expr):
        logger.info("Expression already on log scale; leaving untouched.")
        return expr.astype(float)
    vals = expr.astype(float) + float(offset)
    vals = vals.where(vals > 0.0)
    logger.info("Applied log2(x + %g) transform.", float(offset))
    return np.log2(vals)


def quantile_normalize(expr: pd.DataFrame) -> pd.DataFrame:
    """Give every sample (row) the same value distribution; ties share the mean rank value."""
    X = expr.to_numpy(dtype=float)
    if not np.all(np.isfinite(X)):
        raise ValueError("quantile_normalize requires finite values.")
    target = np.sort(X, axis=1).mean(axis=0)
    ranks = expr.rank(axis=1, method="average").to_numpy(dtype=float)
    positions = np.arange(1, X.shape[1] + 1, dtype=float)
    out = np.vstack([np.interp(r, positions, target) for r in ranks])
    return pd.DataFrame(out, index=expr.index, columns=expr.columns)


def filter_low_expression(
    expr: pd.DataFrame, min_value: float, min_fraction: float = 0.2
) -> pd.DataFrame:
    if not 0.0 <= float(min_fraction) <= 1.0:
        raise ValueError("min_fraction must be in [0, 1].")
    frac = (expr.astype(float) > float(min_value)).mean(axis=0)
    keep = frac >= float(min_fraction)
    logger.info("Expression filter kept %d/%d genes.", int(keep.sum()), expr.shape[1])
    return expr.loc[:, keep.to_numpy()]


def rnaseq_log_cpm(counts: pd.DataFrame) -> pd.DataFrame:
    """Counts (samples x genes) to log2(CPM + 1)."""
    X = counts.to_numpy(dtype=float)
    if not np.all(np.isfinite(X)):
        raise ValueError("Counts contain NaN/inf values.")
    if np.any(X < 0):
        raise ValueError("Counts must be non-negative.")
    lib = X.sum(axis=1)
    if np.any(lib <= 0):
        empty = counts.index[lib <= 0].tolist()
        raise ValueError(f"Samples with zero library size: {empty[:5]}")

    adata = ad.AnnData(
        X=X,
        obs=pd.DataFrame(index=[str(i) for i in counts.index]),
        var=pd.DataFrame(index=[str(c) for c in counts.columns]),
    )
    sc.pp.normalize_total(adata, target_sum=1e6)
    sc.pp.log1p(adata, base=2)
    return pd.DataFrame(np.asarray(adata.X, dtype=float), index=counts.index, columns=counts.columns)


def qpcr_delta_ct(
    ct: pd.DataFrame, housekeeping: Iterable[str], max_ct: float = 40.0
) -> pd.DataFrame:
    """Convert raw Ct values to -dCt against the mean housekeeping Ct.

    Undetermined reactions (NaN or Ct >= `max_ct`) are set to `max_ct`.
    Housekeeping columns are dropped from the output.
    """
    hk = [str(g) for g in housekeeping]
    if not hk:
        raise ValueError("At least one housekeeping gene is required.")
    missing = [g for g in hk if g not in ct.columns]
    if missing:
        raise KeyError(f"Housekeeping genes not found: {', '.join(missing)}")
    vals = ct.apply(pd.to_numeric, errors="coerce").astype(float)
    undetermined = vals.isna() | (vals >= float(max_ct))
    if bool(undetermined.to_numpy().any()):
        logger.info("Set %d undetermined Ct values to %g.", int(undetermined.to_numpy().sum()), float(max_ct))
    vals = vals.mask(undetermined, float(max_ct))
    ref = vals[hk].mean(axis=1)
    targets = [c for c in vals.columns if c not in hk]
    return vals[targets].rsub(ref, axis=0)


def standardize(expr: pd.DataFrame) -> pd.DataFrame:
    """Per-gene z-scores; constant genes become 0."""
    vals = expr.astype(float)
    mu = vals.mean(axis=0)
    sd = vals.std(axis=0, ddof=1)
    constant = ~(sd > 0)
    z = (vals - mu) / sd.where(~constant, 1.0)
    z.loc[:, constant.to_numpy()] = 0.0
    return z

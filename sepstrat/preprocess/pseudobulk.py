"""Per-sample pseudobulk profiles from single-cell / mass-cytometry AnnData."""

from __future__ import annotations

import logging

import anndata as ad
import numpy as np
import pandas as pd
import scipy.sparse as sp

logger = logging.getLogger(__name__)

AGG_FUNCS = ("mean", "median", "sum")


def _dense(matrix) -> np.ndarray:
    if sp.issparse(matrix):
        return matrix.toarray().astype(float)
    return np.asarray(matrix, dtype=float)


def _matrix(adata: ad.AnnData, layer: str | None) -> np.ndarray:
    if layer is None:
        return _dense(adata.X)
    if layer not in adata.layers:
        raise KeyError(f"Layer '{layer}' not found in adata.layers.")
    return _dense(adata.layers[layer])


def _obs_column(adata: ad.AnnData, key: str) -> pd.Series:
    if key not in adata.obs.columns:
        raise KeyError(f"adata.obs['{key}'] not found.")
    col = adata.obs[key]
    if col.isna().any():
        raise ValueError(f"adata.obs['{key}'] contains missing values.")
    return col.astype(str)


def arcsinh_transform(
    adata: ad.AnnData,
    cofactor: float = 5.0,
    layer: str | None = None,
    key_added: str = "arcsinh",
) -> ad.AnnData:
    """Write `arcsinh(x / cofactor)` of `layer` (or X) into `adata.layers[key_added]`."""
    if float(cofactor) <= 0:
        raise ValueError("cofactor must be positive.")
    adata.layers[key_added] = np.arcsinh(_matrix(adata, layer) / float(cofactor))
    return adata


def pseudobulk(
    adata: ad.AnnData,
    sample_key: str,
    *,
    celltype_key: str | None = None,
    layer: str | None = None,
    func: str = "mean",
    min_cells: int = 10,
) -> tuple[pd.DataFrame, pd.Series]:
    """Aggregate cells per sample (or per sample x cell type).

    Returns `(profiles, n_cells)`. With `celltype_key`, profile columns are
    named `"<celltype>|<feature>"` and missing sample/cell-type combinations
    are NaN.
    """
    if func not in AGG_FUNCS:
        raise ValueError(f"func must be one of: {', '.join(AGG_FUNCS)}.")
    keys = [sample_key] if celltype_key is None else [sample_key, celltype_key]
    values = pd.DataFrame(_matrix(adata, layer), columns=[str(v) for v in adata.var_names])
    groups = pd.DataFrame({k: _obs_column(adata, k).to_numpy() for k in keys})

    grouped = values.groupby([groups[k] for k in keys], sort=True)
    n_cells = grouped.size()
    agg = grouped.agg(func)
    keep = n_cells >= int(min_cells)
    dropped = int((~keep).sum())
    if dropped:
        logger.info("Pseudobulk dropped %d groups with fewer than %d cells.", dropped, int(min_cells))
    agg = agg.loc[keep.to_numpy()]
    n_cells = n_cells.loc[keep.to_numpy()]
    if agg.empty:
        raise ValueError(f"No pseudobulk groups with at least {int(min_cells)} cells.")

    if celltype_key is not None:
        wide = agg.unstack(level=1)
        wide.columns = [f"{ct}|{feat}" for feat, ct in wide.columns]
        ordered = sorted(wide.columns, key=lambda c: (c.split("|", 1)[0], c))
        agg = wide.loc[:, ordered]
    agg.index.name = sample_key
    n_cells.name = "n_cells"
    return agg, n_cells


def cell_type_proportions(adata: ad.AnnData, sample_key: str, celltype_key: str) -> pd.DataFrame:
    samples = _obs_column(adata, sample_key)
    celltypes = _obs_column(adata, celltype_key)
    counts = pd.crosstab(samples.to_numpy(), celltypes.to_numpy())
    props = counts.div(counts.sum(axis=1), axis=0)
    props.index.name = sample_key
    props.columns.name = None
    return props

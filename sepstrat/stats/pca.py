"""Principal component analysis of expression matrices."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import kruskal, spearmanr
from sklearn.decomposition import PCA

from sepstrat.stats.multitest import bh_fdr


@dataclass(frozen=True)
class PCAResult:
    scores: pd.DataFrame
    loadings: pd.DataFrame
    explained_variance_ratio: pd.Series


def run_pca(
    expr: pd.DataFrame, n_components: int = 10, *, scale: bool = False, seed: int = 0
) -> PCAResult:
    """PCA on samples x genes; genes are centred (and scaled when `scale`)."""
    X = expr.to_numpy(dtype=float)
    if not np.all(np.isfinite(X)):
        raise ValueError("PCA input contains NaN/inf values.")
    X = X - X.mean(axis=0)
    if scale:
        sd = X.std(axis=0, ddof=1)
        X = X / np.where(sd > 0, sd, 1.0)
    n_comp = max(1, min(int(n_components), X.shape[0], X.shape[1]))
    pca = PCA(n_components=n_comp, random_state=int(seed))
    coords = pca.fit_transform(X)
    cols = [f"PC{i + 1}" for i in range(n_comp)]
    return PCAResult(
        scores=pd.DataFrame(coords, index=expr.index, columns=cols),
        loadings=pd.DataFrame(pca.components_.T, index=expr.columns, columns=cols),
        explained_variance_ratio=pd.Series(pca.explained_variance_ratio_, index=cols),
    )


def pc_associations(
    scores: pd.DataFrame, covariates: pd.DataFrame, max_pcs: int | None = None
) -> pd.DataFrame:
    """Test each PC against each covariate (Spearman if numeric, Kruskal-Wallis otherwise)."""
    pcs = list(scores.columns if max_pcs is None else scores.columns[: int(max_pcs)])
    cov = covariates.reindex(scores.index)
    rows = []
    for col in cov.columns:
        values = cov[col]
        numeric = pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values)
        for pc in pcs:
            mask = values.notna().to_numpy()
            x = scores.loc[mask, pc].to_numpy(dtype=float)
            v = values[mask]
            stat = p = np.nan
            test = "spearman" if numeric else "kruskal"
            if numeric and x.size >= 3 and v.nunique() > 1:
                res = spearmanr(x, v.to_numpy(dtype=float))
                stat, p = float(res.statistic), float(res.pvalue)
            elif not numeric:
                groups = [x[(v == lvl).to_numpy()] for lvl in pd.unique(v)]
                groups = [g for g in groups if g.size > 0]
                if len(groups) >= 2:
                    res = kruskal(*groups)
                    stat, p = float(res.statistic), float(res.pvalue)
            rows.append({"pc": pc, "covariate": col, "test": test, "statistic": stat, "p": p, "n": int(mask.sum())})
    out = pd.DataFrame(rows, columns=["pc", "covariate", "test", "statistic", "p", "n"])
    out["q"] = bh_fdr(out["p"].to_numpy(dtype=float)) if not out.empty else []
    return out

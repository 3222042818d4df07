"""Canonical correlation between two measurement blocks (e.g. transcripts and proteins)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.cross_decomposition import CCA

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CCAResult:
    correlations: np.ndarray
    x_variates: pd.DataFrame
    y_variates: pd.DataFrame
    x_loadings: pd.DataFrame
    y_loadings: pd.DataFrame
    perm_p: np.ndarray | None = None

    def summary(self) -> pd.DataFrame:
        out = pd.DataFrame(
            {
                "component": [f"CC{i + 1}" for i in range(self.correlations.size)],
                "correlation": self.correlations,
            }
        )
        if self.perm_p is not None:
            out["perm_p"] = self.perm_p
        return out


def _zscore_block(name: str, block: pd.DataFrame) -> pd.DataFrame:
    vals = block.astype(float)
    sd = vals.std(axis=0, ddof=1)
    keep = sd > 0
    if int((~keep).sum()):
        logger.info("CCA: dropped %d constant columns from %s block.", int((~keep).sum()), name)
    vals = vals.loc[:, keep.to_numpy()]
    if vals.shape[1] == 0:
        raise ValueError(f"{name} block has no variable columns.")
    return (vals - vals.mean(axis=0)) / vals.std(axis=0, ddof=1)


def _fit_correlations(X: np.ndarray, Y: np.ndarray, n_components: int, max_iter: int):
    cca = CCA(n_components=n_components, scale=False, max_iter=int(max_iter))
    cca.fit(X, Y)
    U, V = cca.transform(X, Y)
    corr = np.array(
        [abs(float(np.corrcoef(U[:, i], V[:, i])[0, 1])) for i in range(n_components)]
    )
    return corr, U, V


def run_cca(
    x_block: pd.DataFrame,
    y_block: pd.DataFrame,
    *,
    n_components: int = 2,
    n_perm: int = 0,
    seed: int = 0,
    max_iter: int = 500,
) -> CCAResult:
    """Canonical correlation on standardised blocks aligned by sample id."""
    shared = [s for s in x_block.index if s in set(y_block.index)]
    x = x_block.loc[shared]
    y = y_block.loc[shared]
    complete = x.notna().all(axis=1) & y.notna().all(axis=1)
    x = _zscore_block("x", x.loc[complete])
    y = _zscore_block("y", y.loc[complete])
    n = int(x.shape[0])
    n_comp = int(n_components)
    if n_comp < 1:
        raise ValueError("n_components must be >= 1.")
    if n < n_comp + 2:
        raise ValueError(f"Too few shared complete samples ({n}) for {n_comp} canonical components.")
    if n_comp > min(x.shape[1], y.shape[1]):
        raise ValueError("n_components exceeds the number of columns in a block.")

    X = x.to_numpy(dtype=float)
    Y = y.to_numpy(dtype=float)
    corr, U, V = _fit_correlations(X, Y, n_comp, max_iter)
    cols = [f"CC{i + 1}" for i in range(n_comp)]
    x_var = pd.DataFrame(U, index=x.index, columns=cols)
    y_var = pd.DataFrame(V, index=y.index, columns=cols)
    x_load = pd.DataFrame(
        [[float(np.corrcoef(X[:, j], U[:, i])[0, 1]) for i in range(n_comp)] for j in range(X.shape[1])],
        index=x.columns,
        columns=cols,
    )
    y_load = pd.DataFrame(
        [[float(np.corrcoef(Y[:, j], V[:, i])[0, 1]) for i in range(n_comp)] for j in range(Y.shape[1])],
        index=y.columns,
        columns=cols,
    )

    perm_p = None
    if int(n_perm) > 0:
        rng = np.random.default_rng(int(seed))
        null = np.empty((int(n_perm), n_comp), dtype=float)
        for b in range(int(n_perm)):
            null[b], _, _ = _fit_correlations(X, Y[rng.permutation(n)], n_comp, max_iter)
        perm_p = (1.0 + np.sum(null >= corr[None, :], axis=0)) / (1.0 + float(n_perm))

    logger.info("CCA on %d samples: canonical correlations %s", n, np.round(corr, 3).tolist())
    return CCAResult(
        correlations=corr,
        x_variates=x_var,
        y_variates=y_var,
        x_loadings=x_load,
        y_loadings=y_load,
        perm_p=perm_p,
    )

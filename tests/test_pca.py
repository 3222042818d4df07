from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from sepstrat.stats.pca import pc_associations, run_pca


def test_pca_first_component_tracks_dominant_signal():
    rng = np.random.default_rng(0)
    n = 60
    signal = rng.normal(size=n)
    X = rng.normal(0.0, 0.3, size=(n, 30))
    X[:, :10] += signal[:, None] * 2.0
    expr = pd.DataFrame(X, index=[f"s{i}" for i in range(n)])
    res = run_pca(expr, n_components=5)
    assert list(res.scores.columns) == [f"PC{i}" for i in range(1, 6)]
    assert res.explained_variance_ratio.iloc[0] > 0.5
    assert abs(np.corrcoef(res.scores["PC1"], signal)[0, 1]) > 0.95

    meta = pd.DataFrame(
        {"signal": signal, "group": np.where(signal > 0, "hi", "lo"), "noise": rng.normal(size=n)},
        index=expr.index,
    )
    assoc = pc_associations(res.scores, meta, max_pcs=2)
    assert assoc.shape[0] == 6
    first = assoc[(assoc["pc"] == "PC1") & (assoc["covariate"] == "signal")].iloc[0]
    assert first["test"] == "spearman"
    assert first["p"] < 1e-10
    grp = assoc[(assoc["pc"] == "PC1") & (assoc["covariate"] == "group")].iloc[0]
    assert grp["test"] == "kruskal"


def test_pca_caps_components_and_rejects_nan():
    expr = pd.DataFrame(np.arange(12, dtype=float).reshape(4, 3) ** 1.5)
    assert run_pca(expr, n_components=10).scores.shape[1] == 3
    with pytest.raises(ValueError, match="NaN"):
        run_pca(expr.where(expr > 1.0))

from __future__ import annotations

from pathlib import Path

import joblib
import numpy as np
import pandas as pd
import pytest

from sepstrat.core.genes import get_panel
from sepstrat.core.reference import fit_reference, load_reference, predict, save_reference
from sepstrat.core.types import PROB_COLUMNS

SHIFT = {"SRS1": 1.5, "SRS2": 0.0, "SRS3": -1.0}


def _labelled_reference(n: int = 90, seed: int = 0):
    rng = np.random.default_rng(seed)
    gp = get_panel("davenport")
    labels = np.array(list(SHIFT) * (n // 3))
    shift = np.array([SHIFT[x] for x in labels])
    X = 8.0 + shift[:, None] + rng.normal(0.0, 0.3, size=(labels.size, len(gp)))
    ids = [f"ref{i:03d}" for i in range(labels.size)]
    expr = pd.DataFrame(X, index=ids, columns=list(gp.symbols))
    srs = pd.Series(labels, index=ids)
    srsq = pd.Series(1.0 / (1.0 + np.exp(-2.0 * shift)), index=ids)
    return expr, srs, srsq


@pytest.mark.parametrize("method", ["rf", "knn"])
def test_fit_and_predict_recovers_reference_labels(method):
    expr, srs, srsq = _labelled_reference()
    model = fit_reference(expr, srs, srsq, method=method, n_estimators=50)
    pred_srs, pred_srsq, probs = predict(model, expr)
    assert (pred_srs == srs).mean() > 0.95
    assert pred_srsq.between(0.0, 1.0).all()
    assert list(probs.columns) == list(PROB_COLUMNS)
    np.testing.assert_allclose(probs.sum(axis=1), 1.0)
    assert pred_srsq[srs == "SRS1"].mean() > pred_srsq[srs == "SRS3"].mean()


def test_two_class_reference_fills_missing_probability_column():
    expr, srs, srsq = _labelled_reference()
    keep = srs != "SRS3"
    model = fit_reference(expr[keep], srs[keep], srsq[keep], n_estimators=20)
    _, _, probs = predict(model, expr[keep])
    assert (probs["SRS3_prob"] == 0.0).all()


def test_reference_label_validation():
    expr, srs, srsq = _labelled_reference()
    with pytest.raises(KeyError, match="lack SRS/SRSq labels"):
        fit_reference(expr, srs.iloc[1:], srsq)
    bad = srs.copy()
    bad.iloc[0] = "SRS4"
    with pytest.raises(ValueError, match="Unknown SRS labels"):
        fit_reference(expr, bad, srsq)
    with pytest.raises(ValueError, match="at least two SRS classes"):
        fit_reference(expr, pd.Series("SRS2", index=srs.index), srsq)
    with pytest.raises(ValueError, match=r"\[0, 1\]"):
        fit_reference(expr, srs, srsq + 1.0)
    with pytest.raises(ValueError, match="Unknown method"):
        fit_reference(expr, srs, srsq, method="svm")


def test_predict_requires_panel_columns_in_order():
    expr, srs, srsq = _labelled_reference()
    model = fit_reference(expr, srs, srsq, method="knn")
    with pytest.raises(ValueError, match="Expected columns"):
        predict(model, expr[list(reversed(expr.columns))])


def test_reference_bundle_roundtrip_and_format_check(tmp_path: Path):
    expr, srs, srsq = _labelled_reference()
    model = fit_reference(expr, srs, srsq, method="knn", n_neighbors=5)
    path = save_reference(model, tmp_path / "models" / "ref.joblib")
    loaded = load_reference(path)
    assert loaded.panel == model.panel
    assert loaded.params["n_neighbors"] == 5
    pd.testing.assert_series_equal(predict(loaded, expr)[1], predict(model, expr)[1])

    joblib.dump({"format": "something-else"}, tmp_path / "other.joblib")
    with pytest.raises(ValueError, match="not a sepstrat reference bundle"):
        load_reference(tmp_path / "other.joblib")
    joblib.dump({"format": "sepstrat-reference", "version": 99, "model": model}, tmp_path / "v99.joblib")
    with pytest.raises(ValueError, match="Unsupported reference bundle version"):
        load_reference(tmp_path / "v99.joblib")
    with pytest.raises(FileNotFoundError):
        load_reference(tmp_path / "missing.joblib")


def test_project_returns_reference_pcs():
    expr, srs, srsq = _labelled_reference()
    model = fit_reference(expr, srs, srsq, method="knn", n_pcs=2)
    pcs = model.project(expr)
    assert list(pcs.columns) == ["PC1", "PC2"]
    assert pcs.shape[0] == model.n_samples

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from sepstrat.core.alignment import align_to_reference, find_mutual_neighbors


def _frames(shift: float = 2.0, n_ref: int = 60, n_query: int = 40, n_genes: int = 5, seed: int = 0):
    rng = np.random.default_rng(seed)
    cols = [f"G{i}" for i in range(n_genes)]
    ref = pd.DataFrame(rng.normal(size=(n_ref, n_genes)), index=[f"r{i}" for i in range(n_ref)], columns=cols)
    query = pd.DataFrame(
        rng.normal(size=(n_query, n_genes)) + shift,
        index=[f"q{i}" for i in range(n_query)],
        columns=cols,
    )
    return ref, query


def test_mutual_neighbors_are_symmetric_pairs():
    ref = np.array([[0.0], [10.0]])
    query = np.array([[0.1], [9.9], [50.0]])
    pairs = find_mutual_neighbors(ref, query, k=1)
    assert pairs == [(0, 0), (1, 1)]


def test_mutual_neighbors_reject_nonpositive_k():
    with pytest.raises(ValueError, match="k must be"):
        find_mutual_neighbors(np.zeros((2, 2)), np.zeros((2, 2)), k=0)


def test_alignment_removes_batch_shift():
    ref, query = _frames(shift=2.0)
    res = align_to_reference(ref, query, k=40)
    before = np.abs(query.mean() - ref.mean()).max()
    after = np.abs(res.aligned.mean() - ref.mean()).max()
    assert after < 0.5 * before
    assert res.n_pairs > 0
    assert list(res.aligned.columns) == list(ref.columns)
    assert list(res.aligned.index) == list(query.index)
    np.testing.assert_allclose(res.aligned.to_numpy(), (query + res.correction).to_numpy())
    assert res.sigma > 0


def test_unanchored_query_samples_are_flagged():
    ref, query = _frames(shift=0.0)
    query.loc["far"] = 100.0
    res = align_to_reference(ref, query, k=5)
    assert bool(res.mnn_outlier["far"])
    assert not bool(res.mnn_outlier.all())
    assert "far" not in set(res.pairs["query"])


def test_alignment_validates_inputs():
    ref, query = _frames()
    with pytest.raises(ValueError, match="identical gene columns"):
        align_to_reference(ref, query[list(reversed(query.columns))])
    with pytest.raises(ValueError, match="k must be"):
        align_to_reference(ref, query, k=0)
    bad = query.copy()
    bad.iloc[0, 0] = np.nan
    with pytest.raises(ValueError, match="NaN"):
        align_to_reference(ref, bad)
    with pytest.raises(ValueError, match="sigma"):
        align_to_reference(ref, query, sigma=-1.0)


def test_cosine_normalised_search_still_corrects_on_input_scale():
    ref, query = _frames(shift=0.5)
    res = align_to_reference(ref + 5.0, query + 5.0, k=30, cosine_norm=True)
    assert res.n_pairs > 0
    assert np.isfinite(res.aligned.to_numpy()).all()

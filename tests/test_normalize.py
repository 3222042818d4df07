from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from sepstrat.preprocess.normalize import (
    ensure_log2,
    filter_low_expression,
    is_log_scale,
    qpcr_delta_ct,
    quantile_normalize,
    rnaseq_log_cpm,
    standardize,
)


def test_log_scale_heuristic():
    rng = np.random.default_rng(0)
    logged = pd.DataFrame(rng.normal(8.0, 2.0, size=(20, 50)))
    raw = 2.0 ** logged
    assert is_log_scale(logged)
    assert not is_log_scale(raw)
    with pytest.raises(ValueError):
        is_log_scale(np.array([np.nan]))


def test_ensure_log2_transforms_only_raw_intensities():
    rng = np.random.default_rng(1)
    logged = pd.DataFrame(rng.normal(8.0, 2.0, size=(10, 30)))
    pd.testing.assert_frame_equal(ensure_log2(logged), logged.astype(float))
    raw = 2.0 ** logged - 1.0
    np.testing.assert_allclose(ensure_log2(raw).to_numpy(), logged.to_numpy(), atol=1e-8)


def test_quantile_normalize_equalises_sample_distributions():
    expr = pd.DataFrame([[5.0, 2.0, 3.0], [4.0, 1.0, 4.0], [3.0, 4.0, 6.0]], columns=list("abc"))
    out = quantile_normalize(expr)
    sorted_rows = np.sort(out.to_numpy(), axis=1)
    target = np.sort(expr.to_numpy(), axis=1).mean(axis=0)
    np.testing.assert_allclose(sorted_rows[0], target)
    np.testing.assert_allclose(sorted_rows[2], target)
    # tied values share the mean of their rank positions
    assert out.loc[1, "a"] == pytest.approx(out.loc[1, "c"])


def test_filter_low_expression():
    expr = pd.DataFrame({"hi": [5.0, 6.0, 7.0, 8.0], "lo": [0.0, 0.0, 0.0, 3.0]})
    assert list(filter_low_expression(expr, 1.0, 0.5).columns) == ["hi"]
    assert list(filter_low_expression(expr, 1.0, 0.25).columns) == ["hi", "lo"]
    with pytest.raises(ValueError):
        filter_low_expression(expr, 1.0, 1.5)


def test_rnaseq_log_cpm():
    counts = pd.DataFrame({"g1": [10, 0], "g2": [90, 50]}, index=["s1", "s2"])
    out = rnaseq_log_cpm(counts)
    expected = np.log2(np.array([[1e5, 9e5], [0.0, 1e6]]) + 1.0)
    np.testing.assert_allclose(out.to_numpy(), expected)
    assert list(out.index) == ["s1", "s2"]
    with pytest.raises(ValueError, match="non-negative"):
        rnaseq_log_cpm(counts - 20)
    with pytest.raises(ValueError, match="zero library size"):
        rnaseq_log_cpm(pd.DataFrame({"g1": [0, 3]}, index=["a", "b"]))


def test_qpcr_delta_ct():
    ct = pd.DataFrame(
        {"GAPDH": [20.0, 22.0], "ACTB": [22.0, 24.0], "TDRD9": [30.0, np.nan]},
        index=["s1", "s2"],
    )
    out = qpcr_delta_ct(ct, ["GAPDH", "ACTB"])
    assert list(out.columns) == ["TDRD9"]
    np.testing.assert_allclose(out["TDRD9"].to_numpy(), [21.0 - 30.0, 23.0 - 40.0])
    with pytest.raises(KeyError, match="B2M"):
        qpcr_delta_ct(ct, ["B2M"])
    with pytest.raises(ValueError):
        qpcr_delta_ct(ct, [])


def test_standardize_zeroes_constant_genes():
    expr = pd.DataFrame({"a": [1.0, 2.0, 3.0], "c": [4.0, 4.0, 4.0]})
    out = standardize(expr)
    np.testing.assert_allclose(out["a"].to_numpy(), [-1.0, 0.0, 1.0])
    assert (out["c"] == 0.0).all()

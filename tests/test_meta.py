from __future__ import annotations

import numpy as np
import pytest

from sepstrat.stats.meta import fixed_effect_meta
from sepstrat.stats.multitest import bh_fdr


def test_fixed_effect_pooling_matches_inverse_variance():
    est = [0.5, 0.7, 0.6]
    se = [0.1, 0.2, 0.1]
    res = fixed_effect_meta(est, se, labels=["GAinS", "MARS", "Vanderbilt"])
    w = 1.0 / np.square(se)
    expected = float(np.sum(w * np.asarray(est)) / np.sum(w))
    assert res["estimate"] == pytest.approx(expected)
    assert res["se"] == pytest.approx(float(np.sqrt(1.0 / np.sum(w))))
    assert res["k"] == 3
    assert res["ci_low"] < res["estimate"] < res["ci_high"]
    assert list(res["studies"]["study"]) == ["GAinS", "MARS", "Vanderbilt"]
    assert res["studies"]["weight"].sum() == pytest.approx(1.0)
    assert res["tau2"] == pytest.approx(0.0)
    assert res["random_estimate"] == pytest.approx(res["estimate"])


def test_heterogeneous_studies_inflate_random_effects_se():
    res = fixed_effect_meta([0.1, 1.5, 0.2, 1.2], [0.1, 0.1, 0.1, 0.1])
    assert res["I2"] > 0.8
    assert res["Q_p"] < 1e-6
    assert res["tau2"] > 0
    assert res["random_se"] > res["se"]
    assert list(res["studies"]["study"]) == ["study1", "study2", "study3", "study4"]


def test_invalid_studies_are_excluded_or_rejected():
    res = fixed_effect_meta([0.4, np.nan, 0.5], [0.1, 0.1, 0.0])
    assert res["k"] == 1
    assert res["studies"]["included"].tolist() == [True, False, False]
    assert np.isnan(res["Q_p"])
    with pytest.raises(ValueError, match="No studies"):
        fixed_effect_meta([np.nan], [0.1])
    with pytest.raises(ValueError, match="equal length"):
        fixed_effect_meta([0.1, 0.2], [0.1])


def test_bh_fdr_matches_hand_computation_and_keeps_nan():
    p = np.array([0.01, np.nan, 0.04, 0.03, 0.5])
    q = bh_fdr(p)
    np.testing.assert_allclose(q[[0, 2, 3, 4]], [0.04, 0.16 / 3, 0.16 / 3, 0.5])
    assert np.isnan(q[1])
    with pytest.raises(ValueError):
        bh_fdr(np.array([1.5]))

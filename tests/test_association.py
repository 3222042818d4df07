from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from sepstrat.stats.association import (
    compare_groups,
    feature_associations,
    logistic_association,
    outcome_by_group,
    score_severity_correlations,
    score_trajectory,
)


def _clinical(n: int = 120, seed: int = 0) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    srsq = rng.uniform(0.0, 1.0, size=n)
    srs = np.where(srsq > 0.66, "SRS1", np.where(srsq > 0.33, "SRS2", "SRS3"))
    logit = -2.0 + 3.0 * srsq
    death = (rng.random(n) < 1.0 / (1.0 + np.exp(-logit))).astype(int)
    return pd.DataFrame(
        {
            "SRSq": srsq,
            "SRS": srs,
            "sofa": 3.0 + 8.0 * srsq + rng.normal(0.0, 1.0, size=n),
            "apache": rng.normal(20.0, 5.0, size=n),
            "age": rng.integers(20, 90, size=n).astype(float),
            "sex": rng.choice(["F", "M"], size=n),
            "death": death,
        },
        index=[f"p{i}" for i in range(n)],
    )


def test_severity_correlations_with_fdr():
    frame = _clinical()
    out = score_severity_correlations(frame, "SRSq", ["sofa", "apache"])
    assert list(out.columns) == ["measure", "n", "rho", "p", "q"]
    sofa = out.set_index("measure").loc["sofa"]
    assert sofa["rho"] > 0.7
    assert sofa["q"] < 1e-6
    with pytest.raises(KeyError, match="lactate"):
        score_severity_correlations(frame, "SRSq", ["lactate"])


def test_constant_measure_gives_nan_correlation():
    frame = _clinical().assign(flat=1.0)
    out = score_severity_correlations(frame, "SRSq", ["flat"])
    assert np.isnan(out.loc[0, "rho"])
    assert np.isnan(out.loc[0, "q"])


def test_compare_groups_kruskal_and_pairwise():
    frame = _clinical()
    res = compare_groups(frame, "sofa", "SRS", order=["SRS1", "SRS2", "SRS3", "SRS4"])
    assert res["p"] < 1e-6
    assert list(res["summary"]["group"]) == ["SRS1", "SRS2", "SRS3"]
    assert res["pairwise"].shape[0] == 3
    first = res["pairwise"].iloc[0]
    assert (first["group_a"], first["group_b"]) == ("SRS1", "SRS2")
    assert first["median_diff"] > 0
    assert (res["pairwise"]["q"] >= res["pairwise"]["p"]).all()


def test_outcome_by_group_tests():
    frame = _clinical()
    res = outcome_by_group(frame, "SRS", "death")
    assert res["test"] == "chi2"
    assert list(res["table"].columns) == ["no_event", "event"]
    assert int(res["table"].to_numpy().sum()) == frame.shape[0]
    two = frame[frame["SRS"] != "SRS2"]
    assert outcome_by_group(two, "SRS", "death")["test"] == "fisher"
    no_events = frame.assign(death=0)
    assert outcome_by_group(no_events, "SRS", "death")["test"] == "none"
    with pytest.raises(ValueError, match="binary"):
        outcome_by_group(frame.assign(death=frame["sofa"]), "SRS", "death")


def test_logistic_association_reports_odds_ratios():
    frame = _clinical(n=300)
    out = logistic_association(frame, "death", "SRSq", ["age", "sex"])
    assert list(out["term"]) == ["SRSq", "age", "sex_M"]
    row = out.iloc[0]
    assert row["OR"] > 1.0
    assert row["OR_low"] < row["OR"] < row["OR_high"]
    assert row["n"] == 300
    assert row["n_events"] == int(frame["death"].sum())


def test_logistic_association_perfect_separation_is_value_error():
    low = np.linspace(0.05, 0.3, 10)
    frame = pd.DataFrame({"SRSq": np.concatenate([low, low + 0.65]), "death": [0] * 10 + [1] * 10})
    with pytest.raises(ValueError):
        logistic_association(frame, "death", "SRSq")
    with pytest.raises(ValueError, match="single observed level"):
        logistic_association(frame.assign(death=1), "death", "SRSq")


def test_feature_associations_sorted_by_p():
    frame = _clinical()
    rng = np.random.default_rng(3)
    features = pd.DataFrame(
        {
            "IL6": frame["SRSq"] * 4.0 + rng.normal(0.0, 0.5, size=frame.shape[0]),
            "NOISE": rng.normal(size=frame.shape[0]),
        },
        index=frame.index,
    )
    out = feature_associations(features, frame["SRSq"])
    assert out.loc[0, "feature"] == "IL6"
    pearson = feature_associations(features, frame["SRSq"], method="pearson")
    assert pearson.loc[0, "rho"] > 0.8
    with pytest.raises(ValueError):
        feature_associations(features, frame["SRSq"], method="kendall")
    with pytest.raises(ValueError, match="share no samples"):
        feature_associations(features, frame["SRSq"].rename(lambda s: s + "x"))


def test_score_trajectory_mixed_model():
    rng = np.random.default_rng(5)
    rows = []
    for subj in range(30):
        base = rng.normal(0.6, 0.1)
        for day in (1, 3, 5):
            rows.append({"patient id": f"P{subj}", "day": day, "SRSq": base - 0.05 * day + rng.normal(0.0, 0.02)})
    frame = pd.DataFrame(rows)
    res = score_trajectory(frame, "SRSq", "day", "patient id")
    fixed = res["fixed_effects"].set_index("term")
    assert fixed.loc["day", "coef"] == pytest.approx(-0.05, abs=0.01)
    assert res["n_subjects"] == 30
    assert res["n_observations"] == 90
    with pytest.raises(ValueError, match="two subjects"):
        score_trajectory(frame[frame["patient id"] == "P0"], "SRSq", "day", "patient id")

"""Associations between stratification scores and clinical or molecular measures."""

from __future__ import annotations

import itertools
import logging
import re
import warnings
from typing import Any, Iterable

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.tools.sm_exceptions import PerfectSeparationError, PerfectSeparationWarning

from sepstrat.stats.de import INTERCEPT, make_design
from sepstrat.stats.multitest import bh_fdr

logger = logging.getLogger(__name__)


def _binary_outcome(values: pd.Series, name: str) -> pd.Series:
    if pd.api.types.is_bool_dtype(values):
        return values.astype(float)
    num = pd.to_numeric(values, errors="coerce")
    observed = set(num.dropna().unique().tolist())
    if not observed <= {0.0, 1.0}:
        raise ValueError(f"Outcome '{name}' must be binary 0/1; found {sorted(observed)[:5]}.")
    return num.astype(float)


def _spearman(x: np.ndarray, y: np.ndarray) -> tuple[float, float, int]:
    mask = np.isfinite(x) & np.isfinite(y)
    n = int(mask.sum())
    if n < 3:
        return float("nan"), float("nan"), n
    xs, ys = x[mask], y[mask]
    if np.allclose(xs, xs[0]) or np.allclose(ys, ys[0]):
        return float("nan"), float("nan"), n
    res = stats.spearmanr(xs, ys)
    return float(res.statistic), float(res.pvalue), n


def _pearson(x: np.ndarray, y: np.ndarray) -> tuple[float, float, int]:
    mask = np.isfinite(x) & np.isfinite(y)
    n = int(mask.sum())
    if n < 3:
        return float("nan"), float("nan"), n
    xs, ys = x[mask], y[mask]
    if np.allclose(xs, xs[0]) or np.allclose(ys, ys[0]):
        return float("nan"), float("nan"), n
    res = stats.pearsonr(xs, ys)
    return float(res.statistic), float(res.pvalue), n


def score_severity_correlations(
    frame: pd.DataFrame, score_col: str, severity_cols: Iterable[str]
) -> pd.DataFrame:
    """Spearman correlation of a score with each severity measure (e.g. SOFA, APACHE II)."""
    if score_col not in frame.columns:
        raise KeyError(f"Score column '{score_col}' not found.")
    score = pd.to_numeric(frame[score_col], errors="coerce").to_numpy(dtype=float)
    rows = []
    for col in severity_cols:
        if col not in frame.columns:
            raise KeyError(f"Severity column '{col}' not found.")
        sev = pd.to_numeric(frame[col], errors="coerce").to_numpy(dtype=float)
        rho, p, n = _spearman(score, sev)
        rows.append({"measure": col, "n": n, "rho": rho, "p": p})
    out = pd.DataFrame(rows, columns=["measure", "n", "rho", "p"])
    out["q"] = bh_fdr(out["p"].to_numpy(dtype=float)) if not out.empty else []
    return out


def compare_groups(
    frame: pd.DataFrame,
    value_col: str,
    group_col: str = "SRS",
    order: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Kruskal-Wallis across groups plus BH-adjusted pairwise Mann-Whitney tests."""
    sub = frame[[value_col, group_col]].copy()
    sub[value_col] = pd.to_numeric(sub[value_col], errors="coerce")
    sub = sub.dropna()
    levels = list(order) if order is not None else sorted(sub[group_col].astype(str).unique())
    samples = {lvl: sub.loc[sub[group_col].astype(str) == lvl, value_col].to_numpy(dtype=float) for lvl in levels}
    samples = {k: v for k, v in samples.items() if v.size > 0}

    summary = pd.DataFrame(
        [
            {
                "group": k,
                "n": int(v.size),
                "median": float(np.median(v)),
                "q1": float(np.quantile(v, 0.25)),
                "q3": float(np.quantile(v, 0.75)),
            }
            for k, v in samples.items()
        ],
        columns=["group", "n", "median", "q1", "q3"],
    )
    h = p = float("nan")
    if len(samples) >= 2:
        pooled = np.concatenate(list(samples.values()))
        if not np.allclose(pooled, pooled[0]):
            res = stats.kruskal(*samples.values())
            h, p = float(res.statistic), float(res.pvalue)

    pair_rows = []
    for a, b in itertools.combinations(samples, 2):
        xa, xb = samples[a], samples[b]
        res = stats.mannwhitneyu(xa, xb, alternative="two-sided")
        pair_rows.append(
            {
                "group_a": a,
                "group_b": b,
                "U": float(res.statistic),
                "p": float(res.pvalue),
                "median_diff": float(np.median(xa) - np.median(xb)),
            }
        )
    pairwise = pd.DataFrame(pair_rows, columns=["group_a", "group_b", "U", "p", "median_diff"])
    pairwise["q"] = bh_fdr(pairwise["p"].to_numpy(dtype=float)) if not pairwise.empty else []
    return {"variable": value_col, "kruskal_H": h, "p": p, "summary": summary, "pairwise": pairwise}


def outcome_by_group(frame: pd.DataFrame, group_col: str, outcome_col: str) -> dict[str, Any]:
    """Event counts and rates per group with chi-square (Fisher exact for 2x2)."""
    sub = frame[[group_col, outcome_col]].dropna()
    outcome = _binary_outcome(sub[outcome_col], outcome_col).astype(int)
    table = pd.crosstab(sub[group_col].astype(str), outcome)
    table = table.reindex(columns=[0, 1], fill_value=0)
    table.columns = ["no_event", "event"]
    rates = table["event"] / table.sum(axis=1)

    test, statistic, p = "none", float("nan"), float("nan")
    if table.shape[0] >= 2 and table["event"].sum() > 0 and table["no_event"].sum() > 0:
        if table.shape == (2, 2):
            res = stats.fisher_exact(table.to_numpy())
            test, statistic, p = "fisher", float(res[0]), float(res[1])
        else:
            chi2, p_chi, _, _ = stats.chi2_contingency(table.to_numpy())
            test, statistic, p = "chi2", float(chi2), float(p_chi)
    return {"table": table, "event_rate": rates, "test": test, "statistic": statistic, "p": p}


def logistic_association(
    frame: pd.DataFrame,
    outcome_col: str,
    predictor: str,
    covariates: Iterable[str] = (),
) -> pd.DataFrame:
    """Logistic regression odds ratios for `predictor` (and covariates) on a binary outcome."""
    cols = [outcome_col, predictor, *covariates]
    missing = [c for c in cols if c not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found: {', '.join(missing)}")
    sub = frame[cols].dropna()
    y = _binary_outcome(sub[outcome_col], outcome_col)
    X = make_design(sub, [predictor, *covariates])
    if y.nunique() < 2:
        raise ValueError(f"Outcome '{outcome_col}' has a single observed level.")

    with warnings.catch_warnings():
        warnings.simplefilter("error", PerfectSeparationWarning)
        try:
            fit = sm.Logit(y.to_numpy(), X).fit(disp=0)
        except (PerfectSeparationError, PerfectSeparationWarning) as exc:
            raise ValueError(f"Perfect separation in logistic model for '{outcome_col}'.") from exc
        except np.linalg.LinAlgError as exc:
            raise ValueError(f"Singular logistic design for '{outcome_col}': {exc}") from exc

    ci = fit.conf_int()
    rows = []
    for term in X.columns:
        if term == INTERCEPT:
            continue
        rows.append(
            {
                "term": term,
                "coef": float(fit.params[term]),
                "se": float(fit.bse[term]),
                "OR": float(np.exp(fit.params[term])),
                "OR_low": float(np.exp(ci.loc[term, 0])),
                "OR_high": float(np.exp(ci.loc[term, 1])),
                "p": float(fit.pvalues[term]),
                "n": int(sub.shape[0]),
                "n_events": int(y.sum()),
            }
        )
    return pd.DataFrame(rows)


def feature_associations(
    features: pd.DataFrame, score: pd.Series, method: str = "spearman"
) -> pd.DataFrame:
    """Correlate every feature column (proteins, pathway scores) with a score."""
    if method not in {"spearman", "pearson"}:
        raise ValueError("method must be 'spearman' or 'pearson'.")
    shared = features.index.intersection(score.index)
    if len(shared) == 0:
        raise ValueError("features and score share no samples.")
    s = pd.to_numeric(score.loc[shared], errors="coerce").to_numpy(dtype=float)
    corr = _spearman if method == "spearman" else _pearson
    rows = []
    for col in features.columns:
        x = pd.to_numeric(features.loc[shared, col], errors="coerce").to_numpy(dtype=float)
        r, p, n = corr(x, s)
        rows.append({"feature": str(col), "n": n, "rho": r, "p": p})
    out = pd.DataFrame(rows, columns=["feature", "n", "rho", "p"])
    out["q"] = bh_fdr(out["p"].to_numpy(dtype=float)) if not out.empty else []
    return out.sort_values("p", kind="mergesort", na_position="last").reset_index(drop=True)


def _safe_name(name: str, used: set[str]) -> str:
    base = re.sub(r"\W+", "_", str(name)).strip("_") or "v"
    if base[0].isdigit():
        base = f"v_{base}"
    cand = base
    i = 1
    while cand in used:
        cand = f"{base}_{i}"
        i += 1
    used.add(cand)
    return cand


def score_trajectory(
    frame: pd.DataFrame,
    score_col: str,
    time_col: str,
    subject_col: str,
    covariates: Iterable[str] = (),
) -> dict[str, Any]:
    """Random-intercept linear mixed model of a score over repeated samples."""
    cols = [score_col, time_col, subject_col, *covariates]
    missing = [c for c in cols if c not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found: {', '.join(missing)}")
    sub = frame[cols].dropna()
    if sub[subject_col].nunique() < 2:
        raise ValueError("Need at least two subjects for a mixed model.")

    used: set[str] = set()
    rename = {c: _safe_name(c, used) for c in cols}
    data = sub.rename(columns=rename)
    terms = [rename[time_col]]
    for c in covariates:
        numeric = pd.api.types.is_numeric_dtype(sub[c]) and not pd.api.types.is_bool_dtype(sub[c])
        terms.append(rename[c] if numeric else f"C({rename[c]})")
    formula = f"{rename[score_col]} ~ " + " + ".join(terms)
    model = smf.mixedlm(formula, data, groups=data[rename[subject_col]])
    fit = model.fit(reml=True)

    back = {v: k for k, v in rename.items()}
    table = pd.DataFrame(
        {
            "coef": fit.fe_params,
            "se": fit.bse_fe,
            "z": fit.tvalues.reindex(fit.fe_params.index),
            "p": fit.pvalues.reindex(fit.fe_params.index),
        }
    )
    table.index = [back.get(t, t) for t in table.index]
    table.index.name = "term"
    return {
        "fixed_effects": table.reset_index(),
        "subject_variance": float(np.asarray(fit.cov_re)[0, 0]),
        "residual_variance": float(fit.scale),
        "n_observations": int(sub.shape[0]),
        "n_subjects": int(sub[subject_col].nunique()),
        "converged": bool(fit.converged),
    }

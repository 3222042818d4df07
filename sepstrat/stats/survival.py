"""Survival analysis: Cox models, Kaplan-Meier curves and concordance."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import numpy as np
import pandas as pd
from lifelines import CoxPHFitter, KaplanMeierFitter
from lifelines.statistics import multivariate_logrank_test
from lifelines.utils import concordance_index

from sepstrat.stats.de import make_design

logger = logging.getLogger(__name__)

DURATION = "duration"
EVENT = "event"


def _event_vector(values: pd.Series, name: str) -> pd.Series:
    if pd.api.types.is_bool_dtype(values):
        return values.astype(float)
    num = pd.to_numeric(values, errors="coerce")
    observed = set(num.dropna().unique().tolist())
    if not observed <= {0.0, 1.0}:
        raise ValueError(f"Event column '{name}' must be binary 0/1.")
    return num


def survival_frame(
    clinical: pd.DataFrame,
    duration_col: str,
    event_col: str,
    horizon: float | None = None,
) -> pd.DataFrame:
    """Clinical table with numeric `duration`/`event` columns, censored at `horizon`."""
    for col in (duration_col, event_col):
        if col not in clinical.columns:
            raise KeyError(f"Survival column '{col}' not found.")
    out = clinical.copy()
    out[DURATION] = pd.to_numeric(out[duration_col], errors="coerce")
    out[EVENT] = _event_vector(out[event_col], event_col)
    n_before = out.shape[0]
    out = out.dropna(subset=[DURATION, EVENT])
    if out.shape[0] < n_before:
        logger.info("Dropped %d samples with missing survival data.", n_before - out.shape[0])
    if bool((out[DURATION] < 0).any()):
        raise ValueError("Survival durations must be non-negative.")
    if horizon is not None:
        h = float(horizon)
        late = out[DURATION] > h
        out.loc[late, EVENT] = 0.0
        out.loc[late, DURATION] = h
    out[EVENT] = out[EVENT].astype(int)
    return out


@dataclass(frozen=True)
class CoxResult:
    summary: pd.DataFrame
    concordance: float
    n: int
    n_events: int
    model: Any = field(repr=False, default=None)

    def term(self, name: str) -> pd.Series:
        hit = self.summary.loc[self.summary["term"] == name]
        if hit.empty:
            raise KeyError(f"Term '{name}' not in Cox model.")
        return hit.iloc[0]


def fit_cox(
    frame: pd.DataFrame,
    predictors: Iterable[str],
    covariates: Iterable[str] = (),
    *,
    duration_col: str = DURATION,
    event_col: str = EVENT,
    penalizer: float = 0.0,
    strata: str | None = None,
) -> CoxResult:
    """Cox proportional-hazards model; categorical predictors are dummy-coded."""
    variables = [*predictors, *covariates]
    needed = [duration_col, event_col, *variables] + ([strata] if strata else [])
    missing = [c for c in needed if c not in frame.columns]
    if missing:
        raise KeyError(f"Columns not found: {', '.join(missing)}")
    sub = frame[needed].dropna()
    n_events = int(sub[event_col].sum())
    if n_events == 0:
        raise ValueError("No events observed; Cox model cannot be fitted.")

    design = make_design(sub, variables, intercept=False)
    data = design.copy()
    data[DURATION] = sub[duration_col].astype(float)
    data[EVENT] = sub[event_col].astype(int)
    strata_cols = None
    if strata:
        data["_strata"] = sub[strata].astype(str)
        strata_cols = ["_strata"]

    cph = CoxPHFitter(penalizer=float(penalizer))
    cph.fit(data, duration_col=DURATION, event_col=EVENT, strata=strata_cols)
    s = cph.summary
    summary = pd.DataFrame(
        {
            "term": s.index.astype(str),
            "coef": s["coef"].to_numpy(),
            "se": s["se(coef)"].to_numpy(),
            "HR": s["exp(coef)"].to_numpy(),
            "HR_low": s["exp(coef) lower 95%"].to_numpy(),
            "HR_high": s["exp(coef) upper 95%"].to_numpy(),
            "z": s["z"].to_numpy(),
            "p": s["p"].to_numpy(),
        }
    )
    logger.info(
        "Cox model on %d samples (%d events): C=%.3f",
        int(data.shape[0]),
        n_events,
        float(cph.concordance_index_),
    )
    return CoxResult(
        summary=summary,
        concordance=float(cph.concordance_index_),
        n=int(data.shape[0]),
        n_events=n_events,
        model=cph,
    )


@dataclass(frozen=True)
class KMResult:
    table: pd.DataFrame
    fitters: dict[str, KaplanMeierFitter]
    logrank_statistic: float
    logrank_p: float


def kaplan_meier(
    frame: pd.DataFrame,
    group_col: str,
    *,
    duration_col: str = DURATION,
    event_col: str = EVENT,
    order: Iterable[str] | None = None,
    timepoint: float | None = None,
) -> KMResult:
    """Kaplan-Meier estimate per group and a multivariate log-rank test."""
    sub = frame[[duration_col, event_col, group_col]].dropna()
    groups = sub[group_col].astype(str)
    levels = list(order) if order is not None else sorted(groups.unique())
    fitters: dict[str, KaplanMeierFitter] = {}
    rows = []
    for lvl in levels:
        mask = (groups == str(lvl)).to_numpy()
        if not mask.any():
            continue
        kmf = KaplanMeierFitter(label=str(lvl))
        kmf.fit(sub.loc[mask, duration_col], event_observed=sub.loc[mask, event_col])
        fitters[str(lvl)] = kmf
        n_events = int(sub.loc[mask, event_col].sum())
        if n_events == 0:
            logger.info("Kaplan-Meier group %s has no events.", lvl)
        row = {
            "group": str(lvl),
            "n": int(mask.sum()),
            "events": n_events,
            "median_survival": float(kmf.median_survival_time_),
        }
        if timepoint is not None:
            row[f"survival_at_{timepoint:g}"] = float(kmf.survival_function_at_times(float(timepoint)).iloc[0])
        rows.append(row)

    stat = p = float("nan")
    if len(fitters) >= 2:
        in_levels = groups.isin(list(fitters))
        res = multivariate_logrank_test(
            sub.loc[in_levels, duration_col],
            groups[in_levels],
            sub.loc[in_levels, event_col],
        )
        stat, p = float(res.test_statistic), float(res.p_value)
    return KMResult(table=pd.DataFrame(rows), fitters=fitters, logrank_statistic=stat, logrank_p=p)


def concordance(durations: Iterable[float], scores: Iterable[float], events: Iterable[int]) -> float:
    """Harrell's C where a higher score means higher risk."""
    t = np.asarray(list(durations), dtype=float)
    s = np.asarray(list(scores), dtype=float)
    e = np.asarray(list(events), dtype=float)
    mask = np.isfinite(t) & np.isfinite(s) & np.isfinite(e)
    if int(e[mask].sum()) == 0:
        raise ValueError("No events observed; concordance is undefined.")
    return float(concordance_index(t[mask], -s[mask], e[mask]))

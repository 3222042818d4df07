"""Pooling per-cohort effect estimates."""

from __future__ import annotations

from typing import Any, Iterable

import numpy as np
import pandas as pd
from scipy import stats


def fixed_effect_meta(
    estimates: Iterable[float],
    std_errors: Iterable[float],
    labels: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Inverse-variance fixed-effect pooling with a DerSimonian-Laird random-effects estimate."""
    b = np.asarray(list(estimates), dtype=float)
    se = np.asarray(list(std_errors), dtype=float)
    names = [str(x) for x in labels] if labels is not None else [f"study{i + 1}" for i in range(b.size)]
    if b.size != se.size or b.size != len(names):
        raise ValueError("estimates, std_errors and labels must have equal length.")
    ok = np.isfinite(b) & np.isfinite(se) & (se > 0)
    if not ok.any():
        raise ValueError("No studies with finite estimates and positive standard errors.")

    bv, sv = b[ok], se[ok]
    w = 1.0 / sv**2
    pooled = float(np.sum(w * bv) / np.sum(w))
    pooled_se = float(np.sqrt(1.0 / np.sum(w)))
    z = pooled / pooled_se
    p = float(2.0 * stats.norm.sf(abs(z)))

    k = int(bv.size)
    q = float(np.sum(w * (bv - pooled) ** 2))
    df = k - 1
    i2 = max(0.0, (q - df) / q) if q > 0 and df > 0 else 0.0
    q_p = float(stats.chi2.sf(q, df)) if df > 0 else float("nan")
    denom = float(np.sum(w) - np.sum(w**2) / np.sum(w))
    tau2 = max(0.0, (q - df) / denom) if df > 0 and denom > 0 else 0.0
    w_re = 1.0 / (sv**2 + tau2)
    re_est = float(np.sum(w_re * bv) / np.sum(w_re))
    re_se = float(np.sqrt(1.0 / np.sum(w_re)))
    re_p = float(2.0 * stats.norm.sf(abs(re_est / re_se)))

    studies = pd.DataFrame(
        {
            "study": names,
            "estimate": b,
            "se": se,
            "ci_low": b - 1.959964 * se,
            "ci_high": b + 1.959964 * se,
            "included": ok,
        }
    )
    studies["weight"] = 0.0
    studies.loc[ok, "weight"] = w / np.sum(w)
    return {
        "studies": studies,
        "k": k,
        "estimate": pooled,
        "se": pooled_se,
        "ci_low": pooled - 1.959964 * pooled_se,
        "ci_high": pooled + 1.959964 * pooled_se,
        "z": float(z),
        "p": p,
        "Q": q,
        "Q_p": q_p,
        "I2": float(i2),
        "tau2": float(tau2),
        "random_estimate": re_est,
        "random_se": re_se,
        "random_p": re_p,
    }

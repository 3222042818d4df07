"""Apply a reference model to a cohort: align, then predict SRS and SRSq."""

from __future__ import annotations

import logging
import warnings
from typing import Iterable

import numpy as np
import pandas as pd

from sepstrat.core.alignment import align_to_reference
from sepstrat.core.genes import extract_panel
from sepstrat.core.reference import ReferenceModel, predict
from sepstrat.core.types import SensitivityResult, StratificationResult, as_float_frame

logger = logging.getLogger(__name__)

MIN_RECOMMENDED_SAMPLES = 25


def stratify_patients(
    expr: pd.DataFrame,
    reference: ReferenceModel,
    *,
    k: int = 20,
    sigma: float | None = None,
    cosine_norm: bool = False,
    verbose: bool = True,
) -> StratificationResult:
    """Assign SRS labels and SRSq scores to every sample in `expr` (samples x genes)."""
    panel_expr = as_float_frame("expression", extract_panel(expr, reference.panel))
    n = int(panel_expr.shape[0])
    if n < MIN_RECOMMENDED_SAMPLES:
        msg = (
            f"Only {n} samples supplied; neighbour-based alignment is unreliable below "
            f"{MIN_RECOMMENDED_SAMPLES} samples. Interpret SRS/SRSq with caution."
        )
        logger.warning(msg)
        warnings.warn(msg, RuntimeWarning, stacklevel=2)

    alignment = align_to_reference(
        reference.expression,
        panel_expr,
        k=int(k),
        sigma=sigma,
        cosine_norm=bool(cosine_norm),
    )
    srs, srsq, probs = predict(reference, alignment.aligned)

    if verbose:
        logger.info(
            "Stratified %d samples (k=%d): %s; %d potential outliers",
            n,
            int(k),
            srs.value_counts().sort_index().to_dict(),
            int(alignment.mnn_outlier.sum()),
        )
    return StratificationResult(
        srs=srs,
        srsq=srsq,
        probabilities=probs,
        mnn_outlier=alignment.mnn_outlier,
        aligned=alignment.aligned,
        reference_pcs=reference.project(reference.expression),
        query_pcs=reference.project(alignment.aligned),
        k=int(k),
        n_mnn_pairs=alignment.n_pairs,
        metadata={
            "panel": reference.panel.name,
            "method": reference.method,
            "sigma": alignment.sigma,
            "cosine_norm": bool(cosine_norm),
            "n_samples": n,
            "n_reference": reference.n_samples,
        },
    )


def default_k_grid(n_query: int, n_reference: int, n_values: int = 10, k_min: int = 5) -> list[int]:
    k_max = min(int(n_query), int(n_reference)) - 1
    if k_max < 1:
        raise ValueError("Need at least two query and two reference samples for a k grid.")
    lo = min(int(k_min), k_max)
    grid = np.unique(np.linspace(lo, k_max, int(n_values)).round().astype(int))
    return [int(v) for v in grid if v >= 1]


def run_sensitivity_analysis(
    expr: pd.DataFrame,
    reference: ReferenceModel,
    *,
    k_values: Iterable[int] | None = None,
    sd_threshold: float = 0.05,
    sigma: float | None = None,
    cosine_norm: bool = False,
) -> SensitivityResult:
    """Re-run stratification over a grid of `k` and report per-sample SRSq stability."""
    panel_expr = extract_panel(expr, reference.panel)
    if k_values is None:
        grid = default_k_grid(panel_expr.shape[0], reference.n_samples)
    else:
        grid = sorted({int(v) for v in k_values})
    if not grid:
        raise ValueError("k_values must contain at least one value.")

    srsq_cols: dict[int, pd.Series] = {}
    srs_cols: dict[int, pd.Series] = {}
    skipped: list[int] = []
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        for k in grid:
            try:
                res = stratify_patients(
                    panel_expr,
                    reference,
                    k=k,
                    sigma=sigma,
                    cosine_norm=cosine_norm,
                    verbose=False,
                )
            except ValueError as exc:
                logger.warning("Sensitivity analysis skipped k=%d: %s", k, exc)
                skipped.append(k)
                continue
            srsq_cols[k] = res.srsq
            srs_cols[k] = res.srs

    if not srsq_cols:
        raise ValueError("Alignment failed for every k in the sensitivity grid.")

    srsq_by_k = pd.DataFrame(srsq_cols)
    srsq_by_k.columns.name = "k"
    srs_by_k = pd.DataFrame(srs_cols)
    srs_by_k.columns.name = "k"
    logger.info(
        "Sensitivity analysis over k=%s (%d skipped)", list(srsq_cols), len(skipped)
    )
    return SensitivityResult(
        srsq_by_k=srsq_by_k,
        srs_by_k=srs_by_k,
        k_values=tuple(srsq_cols),
        skipped_k=tuple(skipped),
        sd_threshold=float(sd_threshold),
    )

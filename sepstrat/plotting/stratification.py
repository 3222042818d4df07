"""Figures describing classifier application: alignment, score distributions, stability."""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from sepstrat.core.types import SRS_CLASSES, SensitivityResult, StratificationResult
from sepstrat.plotting.styles import DEFAULT_PLOT_STYLE, REFERENCE_COLOR, SRS_COLORS, PlotStyle
from sepstrat.plotting.utils import save_figure


def plot_alignment_pca(
    result: StratificationResult,
    out_path: Path,
    *,
    title: str = "Samples projected onto reference",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Reference (grey) and aligned query samples (coloured by SRS) on reference PCs."""
    ref = result.reference_pcs
    qry = result.query_pcs
    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    y_col = "PC2" if "PC2" in ref.columns else "PC1"
    ax.scatter(
        ref["PC1"],
        ref[y_col],
        s=style.s_ref,
        alpha=style.alpha_ref,
        color=REFERENCE_COLOR,
        label=f"reference (n={ref.shape[0]})",
        linewidths=0,
    )
    outlier = result.mnn_outlier.reindex(qry.index).fillna(False).to_numpy(dtype=bool)
    srs = result.srs.reindex(qry.index).astype(str)
    for cls in SRS_CLASSES:
        mask = (srs == cls).to_numpy() & ~outlier
        if not mask.any():
            continue
        ax.scatter(
            qry.loc[mask, "PC1"],
            qry.loc[mask, y_col],
            s=style.s_query,
            alpha=style.alpha_query,
            color=SRS_COLORS[cls],
            label=f"{cls} (n={int(mask.sum())})",
            edgecolors="black",
            linewidths=0.3,
        )
    if outlier.any():
        ax.scatter(
            qry.loc[outlier, "PC1"],
            qry.loc[outlier, y_col],
            s=style.s_query * 1.5,
            marker=style.outlier_marker,
            color="black",
            label=f"no MNN (n={int(outlier.sum())})",
        )
    ax.set_xlabel("PC1")
    ax.set_ylabel(y_col)
    ax.set_title(f"{title} (k={result.k})")
    ax.legend(loc="best", fontsize=style.legend_fontsize, frameon=True)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_srsq_distribution(
    scores: pd.DataFrame,
    out_path: Path,
    *,
    cohort_col: str | None = None,
    title: str = "SRSq by SRS group",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Strip plot of SRSq per SRS group, one panel per cohort when `cohort_col` is given."""
    cohorts = [None] if cohort_col is None else sorted(scores[cohort_col].astype(str).unique())
    fig, axes = plt.subplots(
        1,
        len(cohorts),
        figsize=(max(style.figsize_scatter[0], 3.2 * len(cohorts)), style.figsize_scatter[1]),
        sharey=True,
        squeeze=False,
    )
    rng = np.random.default_rng(0)
    for ax, cohort in zip(axes[0], cohorts):
        sub = scores if cohort is None else scores.loc[scores[cohort_col].astype(str) == cohort]
        for i, cls in enumerate(SRS_CLASSES):
            vals = sub.loc[sub["SRS"].astype(str) == cls, "SRSq"].to_numpy(dtype=float)
            if vals.size == 0:
                continue
            x = i + rng.uniform(-style.jitter, style.jitter, size=vals.size)
            ax.scatter(x, vals, s=12, alpha=0.8, color=SRS_COLORS[cls], linewidths=0)
            ax.hlines(np.median(vals), i - 0.3, i + 0.3, color="black", linewidth=1.4)
        ax.set_xticks(range(len(SRS_CLASSES)))
        ax.set_xticklabels(SRS_CLASSES)
        ax.set_ylim(-0.03, 1.03)
        if cohort is not None:
            ax.set_title(f"{cohort} (n={sub.shape[0]})", fontsize=style.title_fontsize)
    axes[0][0].set_ylabel("SRSq")
    fig.suptitle(title, fontsize=style.title_fontsize + 1)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_sensitivity(
    result: SensitivityResult,
    out_path: Path,
    *,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """SRSq per sample across k; unstable samples highlighted."""
    summary = result.summary()
    ks = np.asarray(result.k_values, dtype=float)
    fig, ax = plt.subplots(figsize=style.figsize_wide)
    for sample, row in result.srsq_by_k.iterrows():
        unstable = bool(summary.loc[sample, "unstable"])
        ax.plot(
            ks,
            row.to_numpy(dtype=float),
            color="#d62728" if unstable else "#7f7f7f",
            alpha=0.9 if unstable else 0.35,
            linewidth=1.2 if unstable else 0.7,
        )
    ax.set_xlabel("k (mutual nearest neighbours)")
    ax.set_ylabel("SRSq")
    ax.set_ylim(-0.03, 1.03)
    n_unstable = int(summary["unstable"].sum())
    ax.set_title(f"SRSq sensitivity to k ({n_unstable}/{summary.shape[0]} unstable)")
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)

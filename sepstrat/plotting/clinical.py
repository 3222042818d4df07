"""Figures relating scores to clinical outcomes and molecular readouts."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from sepstrat.plotting.styles import DEFAULT_PLOT_STYLE, SRS_COLORS, PlotStyle
from sepstrat.plotting.utils import save_figure
from sepstrat.stats.survival import KMResult


def plot_kaplan_meier(
    km: KMResult,
    out_path: Path,
    *,
    title: str = "Survival by SRS group",
    xlabel: str = "Days",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    fig, ax = plt.subplots(figsize=style.figsize_km)
    for name, kmf in km.fitters.items():
        kmf.plot_survival_function(ax=ax, ci_show=True, color=SRS_COLORS.get(name))
    ax.set_xlabel(xlabel)
    ax.set_ylabel("Survival probability")
    ax.set_ylim(0.0, 1.02)
    p_txt = "NA" if not np.isfinite(km.logrank_p) else f"{km.logrank_p:.2g}"
    ax.set_title(f"{title} (log-rank p={p_txt})")
    ax.legend(loc="lower left", fontsize=style.legend_fontsize)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_score_by_group(
    frame: pd.DataFrame,
    value_col: str,
    out_path: Path,
    *,
    group_col: str = "SRS",
    order: Iterable[str] | None = None,
    p_value: float | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Box plot with jittered points of `value_col` across groups."""
    sub = frame[[value_col, group_col]].copy()
    sub[value_col] = pd.to_numeric(sub[value_col], errors="coerce")
    sub = sub.dropna()
    levels = list(order) if order is not None else sorted(sub[group_col].astype(str).unique())
    data = [sub.loc[sub[group_col].astype(str) == lvl, value_col].to_numpy(dtype=float) for lvl in levels]

    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    non_empty = [i for i, d in enumerate(data) if d.size > 0]
    if non_empty:
        ax.boxplot([data[i] for i in non_empty], positions=non_empty, widths=0.55, showfliers=False)
    rng = np.random.default_rng(0)
    for i, vals in enumerate(data):
        if vals.size == 0:
            continue
        x = i + rng.uniform(-style.jitter, style.jitter, size=vals.size)
        ax.scatter(x, vals, s=12, alpha=0.7, color=SRS_COLORS.get(levels[i], "#555555"), linewidths=0)
    ax.set_xticks(range(len(levels)))
    ax.set_xticklabels([f"{lvl}\n(n={d.size})" for lvl, d in zip(levels, data)])
    ax.set_ylabel(value_col)
    title = f"{value_col} by {group_col}"
    if p_value is not None and np.isfinite(p_value):
        title += f" (Kruskal-Wallis p={p_value:.2g})"
    ax.set_title(title)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_score_vs_severity(
    frame: pd.DataFrame,
    score_col: str,
    severity_col: str,
    out_path: Path,
    *,
    rho: float | None = None,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    sub = frame[[score_col, severity_col]].apply(pd.to_numeric, errors="coerce").dropna()
    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    colors = None
    if "SRS" in frame.columns:
        colors = [SRS_COLORS.get(str(s), "#555555") for s in frame.loc[sub.index, "SRS"]]
    ax.scatter(sub[score_col], sub[severity_col], s=16, alpha=0.8, c=colors, linewidths=0)
    ax.set_xlabel(score_col)
    ax.set_ylabel(severity_col)
    title = f"{severity_col} vs {score_col}"
    if rho is not None and np.isfinite(rho):
        title += f" (Spearman rho={rho:.2f})"
    ax.set_title(title)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_volcano(
    de_table: pd.DataFrame,
    out_path: Path,
    *,
    q_threshold: float = 0.05,
    label_top: int = 10,
    title: str = "Differential expression",
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    p = pd.to_numeric(de_table["P.Value"], errors="coerce").clip(lower=1e-300)
    y = -np.log10(p)
    sig = pd.to_numeric(de_table["adj.P.Val"], errors="coerce") < float(q_threshold)
    fig, ax = plt.subplots(figsize=style.figsize_scatter)
    ax.scatter(de_table.loc[~sig, "logFC"], y[~sig], s=6, color="#9e9e9e", alpha=0.6, linewidths=0)
    up = sig & (de_table["logFC"] > 0)
    down = sig & (de_table["logFC"] <= 0)
    ax.scatter(de_table.loc[up, "logFC"], y[up], s=8, color="#d62728", label=f"up (n={int(up.sum())})", linewidths=0)
    ax.scatter(de_table.loc[down, "logFC"], y[down], s=8, color="#1f77b4", label=f"down (n={int(down.sum())})", linewidths=0)
    top = de_table.loc[sig].nsmallest(int(label_top), "P.Value")
    for idx, row in top.iterrows():
        ax.text(float(row["logFC"]), float(y.loc[idx]), str(row["gene"]), fontsize=6)
    ax.set_xlabel("logFC")
    ax.set_ylabel("-log10(p)")
    ax.set_title(title)
    ax.legend(loc="best", fontsize=style.legend_fontsize)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)


def plot_forest(
    meta: dict[str, Any],
    out_path: Path,
    *,
    xlabel: str = "log hazard ratio per unit SRSq",
    exponentiate: bool = True,
    style: PlotStyle = DEFAULT_PLOT_STYLE,
) -> Path:
    """Per-cohort estimates with 95% CI and the pooled fixed-effect estimate."""
    studies = meta["studies"]
    tf = np.exp if exponentiate else (lambda v: v)
    n = studies.shape[0]
    fig, ax = plt.subplots(figsize=(style.figsize_forest[0], max(style.figsize_forest[1], 0.45 * (n + 2))))
    ypos = np.arange(n, 0, -1, dtype=float)
    est = tf(studies["estimate"].to_numpy(dtype=float))
    lo = tf(studies["ci_low"].to_numpy(dtype=float))
    hi = tf(studies["ci_high"].to_numpy(dtype=float))
    ax.errorbar(est, ypos, xerr=[est - lo, hi - est], fmt="s", color="black", capsize=3, markersize=5)
    pooled = tf(meta["estimate"])
    ax.errorbar(
        [pooled],
        [0.0],
        xerr=[[pooled - tf(meta["ci_low"])], [tf(meta["ci_high"]) - pooled]],
        fmt="D",
        color="#d62728",
        capsize=3,
        markersize=7,
    )
    ax.axvline(1.0 if exponentiate else 0.0, color="#7f7f7f", linestyle="--", linewidth=0.8)
    ax.set_yticks(list(ypos) + [0.0])
    ax.set_yticklabels(list(studies["study"]) + [f"Pooled (I2={100 * meta['I2']:.0f}%)"])
    if exponentiate:
        ax.set_xscale("log")
        xlabel = xlabel.replace("log hazard ratio", "hazard ratio")
    ax.set_xlabel(xlabel)
    fig.tight_layout()
    return save_figure(fig, out_path, style=style)

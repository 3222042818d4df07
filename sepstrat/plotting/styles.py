"""Shared plotting style settings for deterministic figure outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

SRS_COLORS = {
    "SRS1": "#d62728",
    "SRS2": "#1f77b4",
    "SRS3": "#2ca02c",
}
REFERENCE_COLOR = "#bdbdbd"


@dataclass(frozen=True)
class PlotStyle:
    """Centralized plotting defaults used across pipeline figures."""

    dpi: int = 200
    figsize_scatter: tuple[float, float] = (6.0, 5.0)
    figsize_wide: tuple[float, float] = (8.0, 4.5)
    figsize_km: tuple[float, float] = (6.5, 5.0)
    figsize_forest: tuple[float, float] = (6.5, 4.0)
    s_ref: float = 10.0
    s_query: float = 18.0
    alpha_ref: float = 0.35
    alpha_query: float = 0.85
    outlier_marker: str = "x"
    legend_fontsize: int = 8
    axis_label_fontsize: int = 10
    title_fontsize: int = 11
    jitter: float = 0.12


DEFAULT_PLOT_STYLE = PlotStyle()


def apply_plot_style(style: PlotStyle = DEFAULT_PLOT_STYLE) -> None:
    """Apply deterministic matplotlib rcParams for pipeline plots."""
    plt.rcParams.update(
        {
            "figure.dpi": style.dpi,
            "savefig.dpi": style.dpi,
            "savefig.facecolor": "white",
            "font.family": "DejaVu Sans",
            "axes.titlesize": style.title_fontsize,
            "axes.labelsize": style.axis_label_fontsize,
            "legend.fontsize": style.legend_fontsize,
            "axes.grid": False,
            "axes.spines.top": False,
            "axes.spines.right": False,
        }
    )


def plot_style_dict(style: PlotStyle = DEFAULT_PLOT_STYLE) -> dict[str, Any]:
    """Return style + dependency versions for metadata manifests."""
    d = asdict(style)
    d["matplotlib_version"] = str(matplotlib.__version__)
    d["numpy_version"] = str(np.__version__)
    return d

"""Figure factories for stratification and cohort validation outputs."""

from sepstrat.plotting.clinical import (
    plot_forest,
    plot_kaplan_meier,
    plot_score_by_group,
    plot_score_vs_severity,
    plot_volcano,
)
from sepstrat.plotting.stratification import (
    plot_alignment_pca,
    plot_sensitivity,
    plot_srsq_distribution,
)
from sepstrat.plotting.styles import (
    DEFAULT_PLOT_STYLE,
    SRS_COLORS,
    PlotStyle,
    apply_plot_style,
    plot_style_dict,
)
from sepstrat.plotting.utils import sanitize_label, save_figure

__all__ = [
    "PlotStyle",
    "DEFAULT_PLOT_STYLE",
    "SRS_COLORS",
    "apply_plot_style",
    "plot_style_dict",
    "save_figure",
    "sanitize_label",
    "plot_alignment_pca",
    "plot_srsq_distribution",
    "plot_sensitivity",
    "plot_kaplan_meier",
    "plot_score_by_group",
    "plot_score_vs_severity",
    "plot_volcano",
    "plot_forest",
]

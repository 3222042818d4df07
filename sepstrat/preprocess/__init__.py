"""Expression preprocessing for each supported platform."""

from sepstrat.preprocess.annotation import (
    annotate_probes,
    collapse_probes,
    map_identifiers,
    read_probe_annotation,
)
from sepstrat.preprocess.normalize import (
    ensure_log2,
    filter_low_expression,
    is_log_scale,
    qpcr_delta_ct,
    quantile_normalize,
    rnaseq_log_cpm,
    standardize,
)
from sepstrat.preprocess.pseudobulk import arcsinh_transform, cell_type_proportions, pseudobulk

__all__ = [
    "read_probe_annotation",
    "annotate_probes",
    "collapse_probes",
    "map_identifiers",
    "is_log_scale",
    "ensure_log2",
    "quantile_normalize",
    "filter_low_expression",
    "rnaseq_log_cpm",
    "qpcr_delta_ct",
    "standardize",
    "arcsinh_transform",
    "pseudobulk",
    "cell_type_proportions",
]

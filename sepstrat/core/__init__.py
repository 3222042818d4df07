"""Core stratification subpackage."""

from sepstrat.core.alignment import align_to_reference, find_mutual_neighbors
from sepstrat.core.genes import PANELS, extract_panel, get_panel, resolve_panel_columns
from sepstrat.core.reference import (
    ReferenceModel,
    fit_reference,
    load_reference,
    predict,
    save_reference,
)
from sepstrat.core.stratify import run_sensitivity_analysis, stratify_patients
from sepstrat.core.types import (
    PROB_COLUMNS,
    SRS_CLASSES,
    AlignmentResult,
    GenePanel,
    SensitivityResult,
    StratificationResult,
)

__all__ = [
    "SRS_CLASSES",
    "PROB_COLUMNS",
    "GenePanel",
    "AlignmentResult",
    "StratificationResult",
    "SensitivityResult",
    "PANELS",
    "get_panel",
    "resolve_panel_columns",
    "extract_panel",
    "align_to_reference",
    "find_mutual_neighbors",
    "ReferenceModel",
    "fit_reference",
    "predict",
    "save_reference",
    "load_reference",
    "stratify_patients",
    "run_sensitivity_analysis",
]

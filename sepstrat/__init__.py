"""sepstrat public API."""

from sepstrat._version import __version__
from sepstrat.core.alignment import align_to_reference
from sepstrat.core.genes import extract_panel, get_panel
from sepstrat.core.reference import fit_reference, load_reference, save_reference
from sepstrat.core.stratify import run_sensitivity_analysis, stratify_patients
from sepstrat.pipeline import run_cohort_analysis, run_multicohort

__all__ = [
    "__version__",
    "align_to_reference",
    "extract_panel",
    "get_panel",
    "fit_reference",
    "load_reference",
    "save_reference",
    "stratify_patients",
    "run_sensitivity_analysis",
    "run_cohort_analysis",
    "run_multicohort",
]

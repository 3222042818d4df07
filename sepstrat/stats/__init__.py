"""Statistical procedures for cohort validation of SRS/SRSq."""

from sepstrat.stats.association import (
    compare_groups,
    feature_associations,
    logistic_association,
    outcome_by_group,
    score_severity_correlations,
    score_trajectory,
)
from sepstrat.stats.cca import CCAResult, run_cca
from sepstrat.stats.de import group_de, make_design, moderated_lm, score_de
from sepstrat.stats.enrichment import (
    gene_set_scores,
    over_representation,
    rank_based_enrichment,
    read_gmt,
)
from sepstrat.stats.mediation import mediation_analysis
from sepstrat.stats.meta import fixed_effect_meta
from sepstrat.stats.multitest import bh_fdr
from sepstrat.stats.pca import PCAResult, pc_associations, run_pca
from sepstrat.stats.survival import (
    CoxResult,
    KMResult,
    concordance,
    fit_cox,
    kaplan_meier,
    survival_frame,
)

__all__ = [
    "bh_fdr",
    "PCAResult",
    "run_pca",
    "pc_associations",
    "score_severity_correlations",
    "compare_groups",
    "outcome_by_group",
    "logistic_association",
    "feature_associations",
    "score_trajectory",
    "make_design",
    "moderated_lm",
    "score_de",
    "group_de",
    "survival_frame",
    "CoxResult",
    "fit_cox",
    "KMResult",
    "kaplan_meier",
    "concordance",
    "fixed_effect_meta",
    "mediation_analysis",
    "CCAResult",
    "run_cca",
    "read_gmt",
    "over_representation",
    "gene_set_scores",
    "rank_based_enrichment",
]

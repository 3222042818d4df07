"""Config-driven SRS/SRSq validation run for a single cohort."""

from __future__ import annotations

import logging
import warnings
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

import numpy as np
import pandas as pd

from sepstrat._version import __version__
from sepstrat.cohort import load_cohort, load_table
from sepstrat.config import CohortConfig, build_cohort_config, load_json_config
from sepstrat.core.reference import ReferenceModel, load_reference
from sepstrat.core.stratify import run_sensitivity_analysis, stratify_patients
from sepstrat.pipeline.io import (
    close_logger,
    ensure_dir,
    now_utc_iso,
    setup_logger,
    write_json,
    write_runlog,
    write_table,
)
from sepstrat.plotting import (
    apply_plot_style,
    plot_alignment_pca,
    plot_kaplan_meier,
    plot_score_by_group,
    plot_score_vs_severity,
    plot_sensitivity,
    plot_srsq_distribution,
    plot_style_dict,
    plot_volcano,
    sanitize_label,
)
from sepstrat.stats import (
    compare_groups,
    feature_associations,
    fit_cox,
    gene_set_scores,
    group_de,
    kaplan_meier,
    logistic_association,
    mediation_analysis,
    outcome_by_group,
    pc_associations,
    rank_based_enrichment,
    read_gmt,
    run_cca,
    run_pca,
    score_de,
    score_severity_correlations,
    score_trajectory,
    survival_frame,
)

EXPECTED_STEP_ERRORS = (ValueError, KeyError, np.linalg.LinAlgError)


def _resolve_config(config: str | Path | dict[str, Any] | CohortConfig, outdir: str | Path | None) -> CohortConfig:
    if isinstance(config, CohortConfig):
        return config
    if isinstance(config, dict):
        return build_cohort_config(config, outdir=outdir)
    path = Path(config)
    return build_cohort_config(load_json_config(path), base_dir=path.parent, outdir=outdir)


def _run_step(
    name: str,
    fn: Callable[[], Any],
    logger: logging.Logger,
    skipped: dict[str, str],
) -> Any:
    try:
        return fn()
    except EXPECTED_STEP_ERRORS as exc:
        logger.warning("Step '%s' skipped: %s", name, exc)
        skipped[name] = f"{type(exc).__name__}: {exc}"
        return None


def _covariate_frame(frame: pd.DataFrame, covariates: tuple[str, ...]) -> pd.DataFrame | None:
    if not covariates:
        return None
    missing = [c for c in covariates if c not in frame.columns]
    if missing:
        raise KeyError(f"Covariates not found in clinical data: {', '.join(missing)}")
    return frame[list(covariates)]


def run_cohort_analysis(
    config: str | Path | dict[str, Any] | CohortConfig,
    *,
    outdir: str | Path | None = None,
    reference: ReferenceModel | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    """Stratify one cohort and run every configured association analysis.

    Writes `tables/`, `figures/`, `metadata.json`, `stats.json` and `logs/`
    under the cohort output directory and returns a summary mapping.
    """
    cfg = _resolve_config(config, outdir)
    root = ensure_dir(cfg.outdir)
    tables = ensure_dir(root / "tables")
    figures = ensure_dir(root / "figures")
    own_logger = logger is None
    log = logger or setup_logger(root / "logs" / "run.log", f"sepstrat.cohort.{sanitize_label(cfg.name)}")
    apply_plot_style()

    run_warnings: list[str] = []
    skipped: dict[str, str] = {}
    summary: dict[str, Any] = {
        "status": "FAIL",
        "cohort": cfg.name,
        "platform": cfg.platform,
        "skipped_steps": skipped,
    }
    stats_out: dict[str, Any] = {}
    artifacts: dict[str, str] = {}

    try:
        log.info("Cohort %s (%s): starting analysis", cfg.name, cfg.platform)
        cohort = load_cohort(cfg, log=log)
        summary["n_samples"] = cohort.n_samples
        summary["n_genes"] = int(cohort.expression.shape[1])
        model = reference if reference is not None else load_reference(cfg.reference_path)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", RuntimeWarning)
            strat = stratify_patients(cohort.expression, model, k=cfg.k)
        run_warnings.extend(str(w.message) for w in caught)
        summary.update({"k": strat.k, "n_mnn_pairs": strat.n_mnn_pairs})

        scores = strat.to_frame()
        artifacts["scores"] = write_table(scores, tables / "srs_assignments.csv", index=True).as_posix()
        frame = cohort.with_scores(scores)
        artifacts["alignment_pca"] = plot_alignment_pca(
            strat, figures / "alignment_pca.png", title=f"{cfg.name}: projection onto reference"
        ).as_posix()
        artifacts["srsq_distribution"] = plot_srsq_distribution(
            scores, figures / "srsq_distribution.png", title=f"{cfg.name}: SRSq by SRS group"
        ).as_posix()
        stats_out["srs_counts"] = {k: int(v) for k, v in scores["SRS"].value_counts().sort_index().items()}
        stats_out["srsq_median"] = float(scores["SRSq"].median())
        stats_out["n_outliers"] = int(scores["mnn_outlier"].sum())

        covariates = _run_step("covariates", lambda: _covariate_frame(frame, cfg.covariates), log, skipped)

        if cfg.run_sensitivity:
            sens = _run_step("sensitivity", lambda: run_sensitivity_analysis(cohort.expression, model), log, skipped)
            if sens is not None:
                sens_summary = sens.summary()
                write_table(sens_summary, tables / "sensitivity_summary.csv", index=True)
                write_table(sens.srsq_by_k, tables / "sensitivity_srsq_by_k.csv", index=True)
                artifacts["sensitivity"] = plot_sensitivity(sens, figures / "sensitivity.png").as_posix()
                stats_out["n_unstable"] = int(sens_summary["unstable"].sum())

        def _pca() -> None:
            pcs = run_pca(cohort.expression, n_components=10, seed=cfg.seed)
            cov_cols = ["SRSq", "SRS", *[c for c in cfg.severity_cols if c in frame.columns]]
            assoc = pc_associations(pcs.scores, frame[cov_cols], max_pcs=5)
            write_table(pcs.explained_variance_ratio.rename("explained_variance_ratio").to_frame(), tables / "pca_variance.csv", index=True)
            write_table(assoc, tables / "pca_associations.csv")

        _run_step("pca", _pca, log, skipped)

        if cfg.severity_cols:

            def _severity() -> None:
                corr = score_severity_correlations(frame, "SRSq", cfg.severity_cols)
                write_table(corr, tables / "severity_correlations.csv")
                stats_out["severity"] = corr.set_index("measure")[["rho", "p", "n"]].to_dict(orient="index")
                group_rows = []
                for col in cfg.severity_cols:
                    cmp = compare_groups(frame, col, "SRS")
                    group_rows.append({"measure": col, "kruskal_H": cmp["kruskal_H"], "p": cmp["p"]})
                    write_table(cmp["pairwise"], tables / f"severity_pairwise_{sanitize_label(col)}.csv")
                    plot_score_by_group(
                        frame, col, figures / f"severity_by_srs_{sanitize_label(col)}.png", p_value=cmp["p"]
                    )
                    rho = corr.loc[corr["measure"] == col, "rho"].iloc[0]
                    plot_score_vs_severity(
                        frame, "SRSq", col, figures / f"srsq_vs_{sanitize_label(col)}.png", rho=float(rho)
                    )
                write_table(pd.DataFrame(group_rows), tables / "severity_by_srs.csv")

            _run_step("severity", _severity, log, skipped)

        if cfg.outcome_col:

            def _outcome() -> None:
                res = outcome_by_group(frame, "SRS", cfg.outcome_col)
                tab = res["table"].copy()
                tab["event_rate"] = res["event_rate"]
                write_table(tab, tables / "outcome_by_srs.csv", index=True)
                stats_out["outcome_by_srs"] = {"test": res["test"], "p": res["p"]}
                logit = logistic_association(frame, cfg.outcome_col, "SRSq", cfg.covariates)
                write_table(logit, tables / "outcome_logistic.csv")
                row = logit.loc[logit["term"] == "SRSq"].iloc[0]
                stats_out["outcome_logistic_srsq"] = {"OR": row["OR"], "p": row["p"]}

            _run_step("outcome", _outcome, log, skipped)

        if cfg.duration_col and cfg.event_col:

            def _survival() -> None:
                surv = survival_frame(frame, cfg.duration_col, cfg.event_col, horizon=cfg.survival_horizon)
                cox = fit_cox(surv, ["SRSq"], cfg.covariates)
                write_table(cox.summary, tables / "cox_srsq.csv")
                term = cox.term("SRSq")
                stats_out["cox_srsq"] = {
                    "coef": float(term["coef"]),
                    "se": float(term["se"]),
                    "HR": float(term["HR"]),
                    "p": float(term["p"]),
                    "concordance": cox.concordance,
                    "n": cox.n,
                    "n_events": cox.n_events,
                }
                km = kaplan_meier(surv, "SRS", order=["SRS1", "SRS2", "SRS3"], timepoint=cfg.survival_horizon)
                write_table(km.table, tables / "kaplan_meier_by_srs.csv")
                stats_out["logrank_p"] = km.logrank_p
                artifacts["kaplan_meier"] = plot_kaplan_meier(
                    km, figures / "kaplan_meier_by_srs.png", title=f"{cfg.name}: survival by SRS"
                ).as_posix()

            _run_step("survival", _survival, log, skipped)

        de_table = None
        if cfg.run_de:

            def _de() -> pd.DataFrame:
                table = score_de(cohort.expression, frame["SRSq"], covariates)
                write_table(table, tables / "de_srsq.csv")
                plot_volcano(table, figures / "volcano_srsq.png", title=f"{cfg.name}: genes associated with SRSq")
                stats_out["de_srsq_n_significant"] = int((table["adj.P.Val"] < 0.05).sum())
                present = set(frame["SRS"].astype(str))
                if {"SRS1", "SRS2"} <= present:
                    contrast = group_de(cohort.expression, frame["SRS"], "SRS1", "SRS2", covariates)
                    write_table(contrast, tables / "de_srs1_vs_srs2.csv")
                return table

            de_table = _run_step("differential_expression", _de, log, skipped)

        if cfg.protein_path:

            def _proteins() -> None:
                proteins = load_table(cfg.protein_path)
                assoc = feature_associations(proteins, frame["SRSq"])
                write_table(assoc, tables / "protein_srsq_associations.csv")
                stats_out["protein_n_significant"] = int((assoc["q"] < 0.05).sum())
                n_comp = int(cfg.extra.get("cca_components", 2))
                cca = run_cca(
                    strat.aligned,
                    proteins,
                    n_components=min(n_comp, strat.aligned.shape[1], proteins.shape[1]),
                    n_perm=int(cfg.extra.get("cca_permutations", 100)),
                    seed=cfg.seed,
                )
                write_table(cca.summary(), tables / "cca_summary.csv")
                write_table(cca.y_loadings, tables / "cca_protein_loadings.csv", index=True)
                write_table(cca.x_loadings, tables / "cca_gene_loadings.csv", index=True)
                stats_out["cca_first_correlation"] = float(cca.correlations[0])

            _run_step("proteins", _proteins, log, skipped)

        if cfg.gmt_path:

            def _pathways() -> None:
                gene_sets = read_gmt(cfg.gmt_path)
                set_scores = gene_set_scores(cohort.expression, gene_sets)
                write_table(set_scores, tables / "gene_set_scores.csv", index=True)
                write_table(feature_associations(set_scores, frame["SRSq"]), tables / "gene_set_srsq_associations.csv")
                if de_table is not None:
                    ranked = de_table.set_index("gene")["t"]
                    write_table(rank_based_enrichment(ranked, gene_sets), tables / "gene_set_rank_enrichment.csv")

            _run_step("pathways", _pathways, log, skipped)

        mediation_cfg = cfg.extra.get("mediation")
        if isinstance(mediation_cfg, dict):

            def _mediation() -> None:
                res = mediation_analysis(
                    frame,
                    exposure=str(mediation_cfg["exposure"]),
                    mediator=str(mediation_cfg.get("mediator", "SRSq")),
                    outcome=str(mediation_cfg.get("outcome", cfg.outcome_col)),
                    covariates=tuple(mediation_cfg.get("covariates", cfg.covariates)),
                    outcome_family=str(mediation_cfg.get("family", "binomial")),
                    n_rep=int(mediation_cfg.get("n_rep", 1000)),
                    seed=cfg.seed,
                )
                write_table(res["effects"], tables / "mediation.csv")
                acme = res["effects"].set_index("effect").loc["ACME (average)"]
                stats_out["mediation_acme"] = {"estimate": float(acme["estimate"]), "p": float(acme["p"])}

            _run_step("mediation", _mediation, log, skipped)

        trajectory_cfg = cfg.extra.get("trajectory")
        if isinstance(trajectory_cfg, dict):

            def _trajectory() -> None:
                res = score_trajectory(
                    frame,
                    "SRSq",
                    str(trajectory_cfg["time_col"]),
                    str(trajectory_cfg["subject_col"]),
                    tuple(trajectory_cfg.get("covariates", ())),
                )
                write_table(res["fixed_effects"], tables / "srsq_trajectory.csv")
                stats_out["trajectory"] = {k: v for k, v in res.items() if k != "fixed_effects"}

            _run_step("trajectory", _trajectory, log, skipped)

        summary["status"] = "PASS"
        summary["n_outliers"] = stats_out["n_outliers"]
    except Exception:
        log.exception("Cohort %s failed.", cfg.name)
        raise
    finally:
        write_runlog(root, title=f"SRS cohort analysis: {cfg.name}", summary=summary, warnings=run_warnings)
        if own_logger:
            close_logger(log)

    cfg_dict = asdict(cfg)
    write_json(
        root / "metadata.json",
        {
            "sepstrat_version": __version__,
            "timestamp_utc": now_utc_iso(),
            "config": cfg_dict,
            "reference": {"panel": model.panel.name, "method": model.method, "n_samples": model.n_samples},
            "stratification": strat.metadata,
            "plot_style": plot_style_dict(),
            "artifacts": artifacts,
        },
    )
    write_json(root / "stats.json", stats_out)
    summary.update(
        {
            "outdir": root.as_posix(),
            "stats": stats_out,
            "warnings": run_warnings,
            "scores": scores,
            "frame": frame,
        }
    )
    return summary

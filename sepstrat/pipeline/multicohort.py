"""Run the cohort analysis across several datasets and pool the SRSq effect."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from sepstrat._version import __version__
from sepstrat.config import build_cohort_config, load_json_config
from sepstrat.pipeline.cohort_analysis import run_cohort_analysis
from sepstrat.pipeline.io import (
    close_logger,
    ensure_dir,
    now_utc_iso,
    setup_logger,
    write_json,
    write_runlog,
    write_table,
)
from sepstrat.plotting import plot_forest, plot_srsq_distribution, sanitize_label
from sepstrat.stats import fixed_effect_meta


def _load_multicohort_config(config: str | Path | dict[str, Any]) -> tuple[dict[str, Any], Path | None]:
    if isinstance(config, dict):
        return config, None
    path = Path(config)
    return load_json_config(path), path.parent


def run_multicohort(
    config: str | Path | dict[str, Any],
    *,
    outdir: str | Path | None = None,
) -> dict[str, Any]:
    """Analyse every cohort listed under `cohorts` and meta-analyse the Cox SRSq effect.

    Keys under `defaults` are applied to each cohort entry before the entry's
    own keys. A cohort that fails is recorded and the run continues.
    """
    cfg, base_dir = _load_multicohort_config(config)
    entries = cfg.get("cohorts")
    if not isinstance(entries, list) or not entries:
        raise ValueError("Multi-cohort config needs a non-empty 'cohorts' list.")
    defaults = cfg.get("defaults", {})
    if not isinstance(defaults, dict):
        raise ValueError("'defaults' must be a JSON object.")

    if outdir is None:
        outdir = Path(cfg.get("outdir", "results/multicohort"))
        if base_dir is not None and not outdir.is_absolute():
            outdir = base_dir / outdir
    root = ensure_dir(outdir)
    logger = setup_logger(root / "logs" / "run.log", "sepstrat.multicohort")
    run_warnings: list[str] = []
    skipped: dict[str, str] = {}
    cohort_summaries: dict[str, dict[str, Any]] = {}
    score_tables: list[pd.DataFrame] = []
    status = "FAIL"

    try:
        for entry in entries:
            merged = {**defaults, **entry}
            cohort_cfg = build_cohort_config(
                merged,
                base_dir=base_dir,
                outdir=root / "cohorts" / sanitize_label(str(merged.get("name", "cohort"))),
            )
            logger.info("Running cohort %s", cohort_cfg.name)
            try:
                result = run_cohort_analysis(cohort_cfg)
            except (ValueError, KeyError, FileNotFoundError, np.linalg.LinAlgError) as exc:
                logger.warning("Cohort %s failed: %s", cohort_cfg.name, exc)
                skipped[cohort_cfg.name] = f"{type(exc).__name__}: {exc}"
                continue
            run_warnings.extend(f"{cohort_cfg.name}: {w}" for w in result["warnings"])
            scores = result["scores"].copy()
            scores.insert(0, "cohort", cohort_cfg.name)
            score_tables.append(scores)
            cohort_summaries[cohort_cfg.name] = {
                "n_samples": result.get("n_samples"),
                "platform": cohort_cfg.platform,
                "skipped_steps": result["skipped_steps"],
                "stats": result["stats"],
            }

        if not score_tables:
            raise RuntimeError("No cohort completed; see the run log for details.")

        combined = pd.concat(score_tables, axis=0)
        write_table(combined, root / "tables" / "srs_assignments_all.csv", index=True)
        plot_srsq_distribution(
            combined, root / "figures" / "srsq_by_cohort.png", cohort_col="cohort", title="SRSq across cohorts"
        )

        counts = combined.groupby("cohort")["SRS"].value_counts().unstack(fill_value=0)
        write_table(counts, root / "tables" / "srs_counts_by_cohort.csv", index=True)

        labels, estimates, ses = [], [], []
        for name, info in cohort_summaries.items():
            cox = info["stats"].get("cox_srsq")
            if cox is None:
                continue
            labels.append(name)
            estimates.append(cox["coef"])
            ses.append(cox["se"])

        meta: dict[str, Any] | None = None
        if len(labels) >= 2:
            meta = fixed_effect_meta(estimates, ses, labels=labels)
            write_table(meta["studies"], root / "tables" / "meta_cox_srsq.csv")
            plot_forest(meta, root / "figures" / "forest_cox_srsq.png")
            logger.info(
                "Pooled SRSq log-HR %.3f (SE %.3f, p=%.3g, I2=%.1f%%)",
                meta["estimate"],
                meta["se"],
                meta["p"],
                100.0 * meta["I2"],
            )
        else:
            logger.info("Meta-analysis skipped: %d cohort(s) with a Cox estimate.", len(labels))
            skipped["meta_analysis"] = f"{len(labels)} cohort(s) with a Cox estimate"

        pooled = None
        if meta is not None:
            pooled = {k: v for k, v in meta.items() if k != "studies"}
        write_json(
            root / "metadata.json",
            {
                "sepstrat_version": __version__,
                "timestamp_utc": now_utc_iso(),
                "cohorts": list(cohort_summaries),
                "failed": {k: v for k, v in skipped.items() if k != "meta_analysis"},
            },
        )
        write_json(root / "stats.json", {"cohorts": cohort_summaries, "meta_cox_srsq": pooled})
        status = "PASS"
    finally:
        write_runlog(
            root,
            title="SRS multi-cohort analysis",
            summary={
                "status": status,
                "n_samples": sum(int(t.shape[0]) for t in score_tables),
                "skipped_steps": skipped,
            },
            warnings=run_warnings,
        )
        close_logger(logger)

    return {
        "status": status,
        "outdir": root.as_posix(),
        "cohorts": cohort_summaries,
        "skipped": skipped,
        "meta": pooled,
        "scores": combined,
    }

from __future__ import annotations

import json
import logging
from pathlib import Path

import anndata as ad
import matplotlib
import numpy as np
import pandas as pd
import pytest

from sepstrat.cohort import load_expression
from sepstrat.config import build_cohort_config
from sepstrat.core.genes import get_panel
from sepstrat.core.reference import fit_reference, save_reference
from sepstrat.pipeline import run_cohort_analysis, run_multicohort

matplotlib.use("Agg")

SHIFT = {"SRS1": 1.5, "SRS2": 0.0, "SRS3": -1.0}
BATCH_PATTERN = np.array([1.0, -1.0, 1.0, -1.0, 1.0, -1.0, 0.0])


def _simulate(n: int, *, batch: float, seed: int):
    rng = np.random.default_rng(seed)
    gp = get_panel("davenport")
    labels = rng.choice(list(SHIFT), size=n, p=[0.3, 0.5, 0.2])
    shift = np.array([SHIFT[x] for x in labels])
    panel = 8.0 + batch * BATCH_PATTERN[None, :] + shift[:, None] + rng.normal(0.0, 0.3, size=(n, len(gp)))
    other = rng.normal(6.0 + batch, 1.0, size=(n, 40))
    other[:, :5] += 2.0 * shift[:, None]
    ids = [f"S{seed}_{i:03d}" for i in range(n)]
    expr = pd.DataFrame(
        np.hstack([panel, other]),
        index=ids,
        columns=list(gp.symbols) + [f"GENE{j:03d}" for j in range(40)],
    )
    srsq = 1.0 / (1.0 + np.exp(-2.0 * shift))
    death = (rng.random(n) < 0.1 + 0.5 * srsq).astype(int)
    clinical = pd.DataFrame(
        {
            "sample_id": ids,
            "SRS_truth": labels,
            "sofa": np.round(3 + 8 * srsq + rng.normal(0.0, 1.0, size=n)),
            "age": rng.uniform(25.0, 90.0, size=n).round(),
            "mortality_28d": death,
            "days": np.where(death == 1, rng.integers(1, 28, size=n), 28),
            "patient": [f"P{i // 2}" for i in range(n)],
            "day": [1 if i % 2 == 0 else 3 for i in range(n)],
        }
    )
    proteins = pd.DataFrame(
        {
            "IL6": 2.0 * shift + rng.normal(0.0, 0.5, size=n),
            "IL10": rng.normal(size=n),
            "CRP": shift + rng.normal(0.0, 1.0, size=n),
        },
        index=ids,
    )
    return expr, clinical, proteins, pd.Series(labels, index=ids), pd.Series(srsq, index=ids)


def _write_dataset(root: Path, *, seed: int = 1, n: int = 80) -> dict[str, Path]:
    root.mkdir(parents=True, exist_ok=True)
    ref_expr, _, _, ref_srs, ref_srsq = _simulate(150, batch=0.0, seed=0)
    model = fit_reference(ref_expr, ref_srs, ref_srsq, method="knn", n_neighbors=10)
    paths = {"reference": save_reference(model, root / "reference.joblib")}
    expr, clinical, proteins, _, _ = _simulate(n, batch=1.0, seed=seed)
    expr.to_csv(root / "expr.csv")
    clinical.to_csv(root / "clinical.csv", index=False)
    proteins.to_csv(root / "proteins.csv")
    gmt_lines = [
        "SHIFTED\tna\t" + "\t".join(f"GENE{j:03d}" for j in range(5)),
        "BACKGROUND\tna\t" + "\t".join(f"GENE{j:03d}" for j in range(20, 30)),
    ]
    (root / "sets.gmt").write_text("\n".join(gmt_lines) + "\n", encoding="utf-8")
    paths.update(
        {
            "expr": root / "expr.csv",
            "clinical": root / "clinical.csv",
            "proteins": root / "proteins.csv",
            "gmt": root / "sets.gmt",
        }
    )
    return paths


def _cohort_config(paths: dict[str, Path], **overrides) -> dict:
    cfg = {
        "name": "synthetic",
        "platform": "microarray",
        "expression_path": paths["expr"].as_posix(),
        "clinical_path": paths["clinical"].as_posix(),
        "reference_path": paths["reference"].as_posix(),
        "k": 20,
        "severity_cols": ["sofa"],
        "outcome_col": "mortality_28d",
        "duration_col": "days",
        "event_col": "mortality_28d",
        "survival_horizon": 28,
        "covariates": ["age"],
        "run_de": True,
        "protein_path": paths["proteins"].as_posix(),
        "gmt_path": paths["gmt"].as_posix(),
        "run_sensitivity": True,
        "cca_permutations": 10,
        "mediation": {"exposure": "age", "outcome": "mortality_28d", "n_rep": 30},
        "trajectory": {"time_col": "day", "subject_col": "patient"},
    }
    cfg.update(overrides)
    return cfg


def test_cohort_pipeline_writes_all_outputs(tmp_path: Path):
    paths = _write_dataset(tmp_path / "data")
    outdir = tmp_path / "out"
    summary = run_cohort_analysis(_cohort_config(paths), outdir=outdir)

    assert summary["status"] == "PASS"
    assert summary["n_samples"] == 80
    assert summary["n_mnn_pairs"] > 0
    for name in (
        "srs_assignments.csv",
        "severity_correlations.csv",
        "severity_by_srs.csv",
        "outcome_by_srs.csv",
        "outcome_logistic.csv",
        "cox_srsq.csv",
        "kaplan_meier_by_srs.csv",
        "de_srsq.csv",
        "protein_srsq_associations.csv",
        "cca_summary.csv",
        "gene_set_scores.csv",
        "gene_set_srsq_associations.csv",
        "sensitivity_summary.csv",
        "pca_associations.csv",
    ):
        assert (outdir / "tables" / name).exists(), name
    for name in ("alignment_pca.png", "srsq_distribution.png", "kaplan_meier_by_srs.png", "volcano_srsq.png"):
        assert (outdir / "figures" / name).exists(), name

    scores = pd.read_csv(outdir / "tables" / "srs_assignments.csv", index_col=0)
    assert list(scores.columns[:2]) == ["SRS", "SRSq"]
    assert scores["SRSq"].between(0.0, 1.0).all()
    clinical = pd.read_csv(paths["clinical"], index_col="sample_id")
    agreement = (scores["SRS"] == clinical.loc[scores.index, "SRS_truth"]).mean()
    assert agreement > 0.7

    stats_text = (outdir / "stats.json").read_text(encoding="utf-8")
    assert "NaN" not in stats_text
    stats = json.loads(stats_text)
    assert stats["cox_srsq"]["se"] > 0
    assert stats["severity"]["sofa"]["rho"] > 0.3
    assert "mediation_acme" in stats
    meta = json.loads((outdir / "metadata.json").read_text(encoding="utf-8"))
    assert meta["config"]["name"] == "synthetic"
    assert meta["reference"]["n_samples"] == 150
    assert (outdir / "logs" / "run.log").exists()
    runlog = (outdir / "logs" / "runlog.md").read_text(encoding="utf-8")
    assert "- status: PASS" in runlog
    assert "- n_samples: 80" in runlog


def test_cohort_pipeline_with_sensitivity_only(tmp_path: Path):
    paths = _write_dataset(tmp_path / "data")
    cfg = _cohort_config(
        paths,
        severity_cols=[],
        outcome_col=None,
        duration_col=None,
        run_de=False,
        protein_path=None,
        gmt_path=None,
        mediation=None,
        trajectory=None,
    )
    outdir = tmp_path / "out"
    summary = run_cohort_analysis(cfg, outdir=outdir)
    assert summary["status"] == "PASS"
    assert isinstance(summary["n_outliers"], int)
    stats = json.loads((outdir / "stats.json").read_text(encoding="utf-8"))
    sens = pd.read_csv(outdir / "tables" / "sensitivity_summary.csv", index_col=0)
    assert stats["n_unstable"] == int(sens["unstable"].sum())
    assert sens.shape[0] == 80
    assert (outdir / "figures" / "sensitivity.png").exists()
    runlog = (outdir / "logs" / "runlog.md").read_text(encoding="utf-8")
    assert "- status: PASS\n" in runlog
    assert runlog.count("- n_outliers:") == 1


def test_expected_step_failure_is_skipped_not_fatal(tmp_path: Path):
    paths = _write_dataset(tmp_path / "data")
    cfg = _cohort_config(
        paths,
        severity_cols=["apache_ii"],
        duration_col="days_to_death",
        protein_path=None,
        gmt_path=None,
        run_sensitivity=False,
        mediation=None,
        trajectory=None,
    )
    summary = run_cohort_analysis(cfg, outdir=tmp_path / "out")
    assert summary["status"] == "PASS"
    assert "severity" in summary["skipped_steps"]
    assert "survival" in summary["skipped_steps"]
    assert "apache_ii" in summary["skipped_steps"]["severity"]
    runlog = (tmp_path / "out" / "logs" / "runlog.md").read_text(encoding="utf-8")
    assert "- survival: KeyError" in runlog


def test_unexpected_failure_marks_run_failed(tmp_path: Path):
    paths = _write_dataset(tmp_path / "data")
    cfg = _cohort_config(paths, reference_path=(tmp_path / "nope.joblib").as_posix())
    with pytest.raises(FileNotFoundError):
        run_cohort_analysis(cfg, outdir=tmp_path / "out")
    runlog = (tmp_path / "out" / "logs" / "runlog.md").read_text(encoding="utf-8")
    assert "- status: FAIL" in runlog


def test_cohort_pipeline_from_json_config_resolves_relative_paths(tmp_path: Path):
    paths = _write_dataset(tmp_path / "data")
    cfg = {
        "name": "from_json",
        "expression_path": "data/expr.csv",
        "clinical_path": "data/clinical.csv",
        "reference_path": "data/reference.joblib",
        "outdir": "results/from_json",
    }
    cfg_path = tmp_path / "cohort.json"
    cfg_path.write_text(json.dumps(cfg), encoding="utf-8")
    summary = run_cohort_analysis(cfg_path)
    assert Path(summary["outdir"]) == tmp_path / "results" / "from_json"
    assert summary["skipped_steps"] == {}
    assert paths["expr"].exists()


def test_multicohort_pools_cox_estimates(tmp_path: Path):
    data_a = _write_dataset(tmp_path / "a", seed=1)
    data_b = _write_dataset(tmp_path / "b", seed=2, n=60)
    defaults = {
        "platform": "microarray",
        "duration_col": "days",
        "event_col": "mortality_28d",
        "survival_horizon": 28,
    }
    cfg = {
        "defaults": defaults,
        "cohorts": [
            {
                "name": "cohort A",
                "expression_path": data_a["expr"].as_posix(),
                "clinical_path": data_a["clinical"].as_posix(),
                "reference_path": data_a["reference"].as_posix(),
            },
            {
                "name": "cohort_b",
                "expression_path": data_b["expr"].as_posix(),
                "clinical_path": data_b["clinical"].as_posix(),
                "reference_path": data_b["reference"].as_posix(),
            },
            {
                "name": "broken",
                "expression_path": (tmp_path / "missing.csv").as_posix(),
                "clinical_path": data_b["clinical"].as_posix(),
                "reference_path": data_b["reference"].as_posix(),
            },
        ],
    }
    outdir = tmp_path / "multi"
    summary = run_multicohort(cfg, outdir=outdir)
    assert summary["status"] == "PASS"
    assert set(summary["cohorts"]) == {"cohort A", "cohort_b"}
    assert "broken" in summary["skipped"]
    assert summary["meta"]["k"] == 2
    assert (outdir / "cohorts" / "cohort_A" / "tables" / "cox_srsq.csv").exists()
    assert (outdir / "figures" / "forest_cox_srsq.png").exists()
    combined = pd.read_csv(outdir / "tables" / "srs_assignments_all.csv", index_col=0)
    assert combined.shape[0] == 140
    assert set(combined["cohort"]) == {"cohort A", "cohort_b"}
    studies = pd.read_csv(outdir / "tables" / "meta_cox_srsq.csv")
    assert list(studies["study"]) == ["cohort A", "cohort_b"]


def test_multicohort_requires_cohort_list():
    with pytest.raises(ValueError, match="non-empty 'cohorts'"):
        run_multicohort({"cohorts": []})


def test_platform_loaders(tmp_path: Path):
    gp = get_panel("davenport")
    rng = np.random.default_rng(0)
    ids = [f"s{i}" for i in range(6)]

    counts = pd.DataFrame(rng.poisson(50, size=(6, 7)), index=ids, columns=list(gp.symbols))
    counts.to_csv(tmp_path / "counts.csv")
    base = {"name": "x", "clinical_path": "c.csv", "reference_path": "r.joblib"}
    log = logging.getLogger("test")
    cfg = build_cohort_config({**base, "platform": "rnaseq", "expression_path": (tmp_path / "counts.csv").as_posix()})
    lcpm = load_expression(cfg, log)
    assert lcpm.to_numpy().max() < 20.0

    ct = pd.DataFrame(rng.uniform(20.0, 32.0, size=(6, 8)), index=ids, columns=list(gp.symbols) + ["GAPDH"])
    ct.to_csv(tmp_path / "ct.csv")
    cfg = build_cohort_config(
        {**base, "platform": "qpcr", "expression_path": (tmp_path / "ct.csv").as_posix(), "housekeeping": ["GAPDH"]}
    )
    dct = load_expression(cfg, log)
    assert list(dct.columns) == list(gp.symbols)

    probes = pd.DataFrame(rng.normal(8.0, 1.0, size=(6, 8)), index=ids, columns=[f"p{i}" for i in range(8)])
    probes.to_csv(tmp_path / "probes.csv")
    ann = pd.DataFrame({"ID": [f"p{i}" for i in range(8)], "Gene Symbol": list(gp.symbols) + ["ZAP70"]})
    ann.to_csv(tmp_path / "gpl.csv", index=False)
    cfg = build_cohort_config(
        {
            **base,
            "expression_path": (tmp_path / "probes.csv").as_posix(),
            "annotation_path": (tmp_path / "gpl.csv").as_posix(),
        }
    )
    genes = load_expression(cfg, log)
    assert sorted(genes.columns) == sorted(gp.symbols)

    cells = pd.DataFrame(rng.gamma(2.0, 30.0, size=(120, 7)), columns=list(gp.symbols))
    adata = ad.AnnData(
        X=cells.to_numpy(),
        obs=pd.DataFrame({"sample_id": np.repeat(ids, 20)}, index=[f"c{i}" for i in range(120)]),
        var=pd.DataFrame(index=list(gp.symbols)),
    )
    adata.write_h5ad(tmp_path / "cells.h5ad")
    cfg = build_cohort_config({**base, "platform": "cytometry", "expression_path": (tmp_path / "cells.h5ad").as_posix()})
    bulk = load_expression(cfg, log)
    assert list(bulk.index) == ids
    assert bulk.shape[1] == 7

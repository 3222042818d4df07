"""Command-line interfaces for SRS stratification and cohort analyses."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable

from sepstrat.cohort import load_table
from sepstrat.core.genes import PANELS, resolve_panel_columns
from sepstrat.core.reference import METHODS, fit_reference, load_reference, save_reference
from sepstrat.core.stratify import run_sensitivity_analysis, stratify_patients
from sepstrat.pipeline.io import ensure_dir, write_table

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )


def _add_expression_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--expr", required=True, help="Expression table (samples x genes; csv/tsv/parquet/h5ad)")
    parser.add_argument(
        "--transpose",
        action="store_true",
        help="Expression table is genes x samples",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def _out_path(path: str) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    return out


def stratify_main(argv: Iterable[str] | None = None) -> int:
    """Assign SRS/SRSq to every sample in an expression table.

    Args:
        argv: Command-line arguments (if None, uses sys.argv).

    Returns:
        Exit code (0 for success, 1 when `--panel-check` finds missing genes).
    """
    parser = argparse.ArgumentParser(description="Assign SRS endotypes and SRSq scores")
    _add_expression_args(parser)
    parser.add_argument("--reference", required=True, help="Reference model (.joblib)")
    parser.add_argument("--out", required=True, help="Output CSV of per-sample assignments")
    parser.add_argument("--k", type=int, default=20, help="Mutual nearest neighbours for alignment")
    parser.add_argument(
        "--panel-check",
        action="store_true",
        help="Only report whether the reference panel genes are present",
    )
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    expr = load_table(args.expr, transpose=args.transpose)
    reference = load_reference(args.reference)

    if args.panel_check:
        try:
            mapping = resolve_panel_columns(expr.columns, reference.panel)
        except KeyError as exc:
            print(f"panel_check=FAIL {exc.args[0]}")
            return 1
        for symbol, column in mapping.items():
            print(f"{symbol}={column}")
        print(f"panel_check=PASS n_genes={len(mapping)}")
        return 0

    result = stratify_patients(expr, reference, k=args.k)
    out = write_table(result.to_frame(), _out_path(args.out), index=True)
    counts = result.srs.value_counts().sort_index().to_dict()
    print(f"n_samples={result.srs.size} counts={counts} n_outliers={int(result.mnn_outlier.sum())}")
    print(f"wrote={out.as_posix()}")
    return 0


def sensitivity_main(argv: Iterable[str] | None = None) -> int:
    """Re-run stratification over a grid of k and report unstable samples."""
    parser = argparse.ArgumentParser(description="SRS/SRSq sensitivity to the MNN k parameter")
    _add_expression_args(parser)
    parser.add_argument("--reference", required=True, help="Reference model (.joblib)")
    parser.add_argument("--out", required=True, help="Output CSV of per-sample stability summary")
    parser.add_argument("--k-values", type=int, nargs="+", default=None, help="Explicit k grid")
    parser.add_argument("--sd-threshold", type=float, default=0.05, help="SRSq SD above which a sample is unstable")
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    expr = load_table(args.expr, transpose=args.transpose)
    reference = load_reference(args.reference)
    result = run_sensitivity_analysis(expr, reference, k_values=args.k_values, sd_threshold=args.sd_threshold)
    summary = result.summary()
    out = write_table(summary, _out_path(args.out), index=True)
    print(f"k_values={list(result.k_values)} skipped_k={list(result.skipped_k)}")
    print(f"n_unstable={int(summary['unstable'].sum())} of {summary.shape[0]}")
    print(f"wrote={out.as_posix()}")
    return 0


def train_reference_main(argv: Iterable[str] | None = None) -> int:
    """Fit and save a reference model from labelled expression data."""
    parser = argparse.ArgumentParser(description="Train an SRS/SRSq reference model")
    _add_expression_args(parser)
    parser.add_argument("--labels", required=True, help="Table with SRS and SRSq columns indexed by sample")
    parser.add_argument("--out", required=True, help="Output model path (.joblib)")
    parser.add_argument("--panel", default="davenport", choices=sorted(PANELS), help="Gene panel")
    parser.add_argument("--method", default="rf", choices=list(METHODS), help="Prediction method")
    parser.add_argument("--srs-col", default="SRS", help="Column holding SRS labels")
    parser.add_argument("--srsq-col", default="SRSq", help="Column holding SRSq values")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    expr = load_table(args.expr, transpose=args.transpose)
    labels = load_table(args.labels)
    for col in (args.srs_col, args.srsq_col):
        if col not in labels.columns:
            raise KeyError(f"Label column '{col}' not found in {args.labels}.")
    model = fit_reference(
        expr,
        labels[args.srs_col],
        labels[args.srsq_col],
        panel=args.panel,
        method=args.method,
        seed=args.seed,
    )
    out = save_reference(model, _out_path(args.out))
    print(f"n_reference={model.n_samples} panel={model.panel.name} method={model.method}")
    print(f"wrote={out.as_posix()}")
    return 0


def cohort_main(argv: Iterable[str] | None = None) -> int:
    """Run the config-driven analysis for one cohort."""
    parser = argparse.ArgumentParser(description="SRS cohort analysis pipeline")
    parser.add_argument("--config", required=True, help="Path to JSON config")
    parser.add_argument("--outdir", default=None, help="Override the configured output directory")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from sepstrat.pipeline.cohort_analysis import run_cohort_analysis

    summary = run_cohort_analysis(args.config, outdir=args.outdir)
    print(f"status={summary['status']} outdir={summary['outdir']}")
    for step, reason in sorted(summary["skipped_steps"].items()):
        print(f"skipped {step}: {reason}")
    return 0


def multicohort_main(argv: Iterable[str] | None = None) -> int:
    """Run every configured cohort and meta-analyse the SRSq hazard ratio."""
    parser = argparse.ArgumentParser(description="SRS multi-cohort analysis pipeline")
    parser.add_argument("--config", required=True, help="Path to JSON config")
    parser.add_argument("--outdir", default=None, help="Override the configured output directory")
    args = parser.parse_args(list(argv) if argv is not None else None)

    from sepstrat.pipeline.multicohort import run_multicohort

    summary = run_multicohort(args.config, outdir=args.outdir)
    print(f"status={summary['status']} cohorts={len(summary['cohorts'])} outdir={summary['outdir']}")
    meta = summary["meta"]
    if meta is not None:
        print(f"pooled_logHR={meta['estimate']:.4f} se={meta['se']:.4f} p={meta['p']:.3g} I2={meta['I2']:.2f}")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    """Dispatch to a subcommand."""
    parser = argparse.ArgumentParser(description="sepstrat CLI")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("stratify", help="Assign SRS/SRSq to samples")
    sub.add_parser("sensitivity", help="Sensitivity of assignments to k")
    sub.add_parser("train-reference", help="Train a reference model")
    sub.add_parser("cohort", help="Run the cohort pipeline")
    sub.add_parser("multicohort", help="Run the multi-cohort pipeline")

    args, remainder = parser.parse_known_args(list(argv) if argv is not None else None)
    commands = {
        "stratify": stratify_main,
        "sensitivity": sensitivity_main,
        "train-reference": train_reference_main,
        "cohort": cohort_main,
        "multicohort": multicohort_main,
    }
    return commands[args.command](remainder)


if __name__ == "__main__":
    raise SystemExit(main())

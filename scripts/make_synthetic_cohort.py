#!/usr/bin/env python3
"""Write a synthetic labelled reference and query cohort for smoke runs."""

from __future__ import annotations

import argparse
from pathlib import Path

import numpy as np
import pandas as pd

from sepstrat.core.genes import get_panel
from sepstrat.core.reference import fit_reference, save_reference
from sepstrat.pipeline.io import ensure_dir, write_table

# Per-class mean shift of each panel gene; SRS1 is the most distinct group.
CLASS_SHIFT = {"SRS1": 1.5, "SRS2": 0.0, "SRS3": -1.0}


def simulate(n: int, panel: str, *, batch_shift: float, seed: int) -> tuple[pd.DataFrame, pd.DataFrame]:
    rng = np.random.default_rng(seed)
    gp = get_panel(panel)
    labels = rng.choice(list(CLASS_SHIFT), size=n, p=[0.3, 0.5, 0.2])
    loadings = rng.normal(1.0, 0.3, size=len(gp))
    shift = np.array([CLASS_SHIFT[lbl] for lbl in labels])
    # alternating signs keep the batch effect off the class axis
    batch = batch_shift * np.resize([1.0, -1.0], len(gp))
    X = 8.0 + batch[None, :] + shift[:, None] * loadings[None, :] + rng.normal(0.0, 0.5, size=(n, len(gp)))
    noise_genes = rng.normal(6.0 + batch_shift, 1.0, size=(n, 50))
    ids = [f"S{seed}_{i:03d}" for i in range(n)]
    expr = pd.DataFrame(
        np.hstack([X, noise_genes]),
        index=ids,
        columns=list(gp.symbols) + [f"GENE{j:03d}" for j in range(50)],
    )
    srsq = 1.0 / (1.0 + np.exp(-(shift + rng.normal(0.0, 0.3, size=n))))
    mortality = rng.random(n) < np.clip(0.1 + 0.4 * srsq, 0.0, 1.0)
    days = np.where(mortality, rng.integers(1, 28, size=n), 28)
    clinical = pd.DataFrame(
        {
            "SRS": labels,
            "SRSq": srsq,
            "mortality_28d": mortality.astype(int),
            "days_to_event": days,
            "sofa": np.round(4 + 6 * srsq + rng.normal(0.0, 1.5, size=n)),
            "age": rng.integers(25, 90, size=n),
        },
        index=ids,
    )
    clinical.index.name = "sample_id"
    return expr, clinical


def main() -> int:
    parser = argparse.ArgumentParser(description="Write synthetic SRS reference and cohort tables")
    parser.add_argument("--outdir", default="data/synthetic", help="Output directory")
    parser.add_argument("--panel", default="davenport", help="Gene panel")
    parser.add_argument("--n-reference", type=int, default=200, help="Reference cohort size")
    parser.add_argument("--n-query", type=int, default=80, help="Query cohort size")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    args = parser.parse_args()

    out = ensure_dir(args.outdir)
    ref_expr, ref_labels = simulate(args.n_reference, args.panel, batch_shift=0.0, seed=args.seed)
    query_expr, query_clinical = simulate(args.n_query, args.panel, batch_shift=1.2, seed=args.seed + 1)

    model = fit_reference(ref_expr, ref_labels["SRS"], ref_labels["SRSq"], panel=args.panel, seed=args.seed)
    save_reference(model, out / "reference.joblib")
    write_table(ref_expr, out / "reference_expression.csv", index=True)
    write_table(ref_labels[["SRS", "SRSq"]], out / "reference_labels.csv", index=True)
    write_table(query_expr, out / "query_expression.csv", index=True)
    write_table(query_clinical.drop(columns=["SRS", "SRSq"]), out / "query_clinical.csv", index=True)
    print(f"wrote={out.as_posix()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

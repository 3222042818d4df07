"""Platform probe annotation and probe-to-gene collapsing."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping

import pandas as pd

logger = logging.getLogger(__name__)

COLLAPSE_METHODS = ("max_mean", "max_var", "mean", "median")


def _infer_sep(path: Path) -> str:
    return "," if path.suffix.lower() == ".csv" else "\t"


def _count_leading_comments(path: Path, prefix: str = "#") -> int:
    n = 0
    with open(path, "r", encoding="utf-8", errors="replace") as fh:
        for line in fh:
            if not line.startswith(prefix):
                break
            n += 1
    return n


def read_probe_annotation(
    path: str | Path,
    probe_col: str = "ID",
    gene_col: str = "Gene Symbol",
    sep: str | None = None,
) -> pd.Series:
    """Load a platform annotation table as a probe -> gene Series.

    Leading `#` header lines (as in GEO platform tables) are skipped.
    """
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"Annotation file not found: {src}")
    table = pd.read_csv(
        src,
        sep=sep or _infer_sep(src),
        skiprows=_count_leading_comments(src),
        dtype=str,
        keep_default_na=False,
    )
    for col in (probe_col, gene_col):
        if col not in table.columns:
            raise KeyError(f"Annotation column '{col}' not found in {src.name}.")
    genes = table[gene_col].astype(str).str.strip()
    keep = genes != ""
    mapping = pd.Series(genes[keep].to_numpy(), index=table.loc[keep, probe_col].astype(str).str.strip())
    mapping = mapping[~mapping.index.duplicated(keep="first")]
    mapping.index.name = "probe"
    mapping.name = "gene"
    return mapping


def annotate_probes(
    expr: pd.DataFrame,
    annotation: pd.Series,
    *,
    multi_gene: str = "drop",
    separator: str = "///",
) -> tuple[pd.DataFrame, pd.Series]:
    """Restrict `expr` (samples x probes) to annotated probes.

    Probes mapping to several genes are dropped (`multi_gene="drop"`) or
    assigned to the first listed gene (`multi_gene="first"`).
    """
    if multi_gene not in {"drop", "first"}:
        raise ValueError("multi_gene must be 'drop' or 'first'.")
    genes = annotation.astype(str).str.strip()
    multi = genes.str.contains(separator, regex=False)
    if multi_gene == "drop":
        genes = genes[~multi]
    else:
        genes = genes.where(~multi, genes.str.split(separator, regex=False).str[0].str.strip())
    genes = genes[genes != ""]

    probes = [c for c in expr.columns if str(c) in genes.index]
    if not probes:
        raise ValueError("No expression columns match the probe annotation.")
    mapping = pd.Series([genes[str(c)] for c in probes], index=probes, name="gene")
    logger.info(
        "Annotated %d/%d probes (%d multi-gene probes %s)",
        len(probes),
        expr.shape[1],
        int(multi.sum()),
        "dropped" if multi_gene == "drop" else "assigned to first gene",
    )
    return expr.loc[:, probes], mapping


def collapse_probes(
    expr: pd.DataFrame,
    probe_to_gene: Mapping[object, str] | pd.Series,
    method: str = "max_mean",
) -> pd.DataFrame:
    """Collapse probe columns to one column per gene."""
    if method not in COLLAPSE_METHODS:
        raise ValueError(f"Unknown collapse method '{method}'. Use one of: {', '.join(COLLAPSE_METHODS)}.")
    mapping = pd.Series(probe_to_gene)
    probes = [c for c in expr.columns if c in mapping.index]
    if not probes:
        raise ValueError("No expression columns found in probe_to_gene mapping.")
    sub = expr.loc[:, probes].astype(float)
    genes = mapping.loc[probes].astype(str).to_numpy()

    if method in {"mean", "median"}:
        grouped = sub.T.groupby(genes, sort=True)
        out = (grouped.mean() if method == "mean" else grouped.median()).T
    else:
        stat = sub.mean(axis=0) if method == "max_mean" else sub.var(axis=0, ddof=1)
        ranking = pd.DataFrame({"probe": probes, "gene": genes, "stat": stat.to_numpy()})
        ranking["order"] = range(len(probes))
        ranking = ranking.sort_values(["gene", "stat", "order"], ascending=[True, False, True], kind="mergesort")
        best = ranking.drop_duplicates("gene", keep="first")
        out = sub.loc[:, best["probe"].tolist()]
        out.columns = best["gene"].tolist()

    out.columns.name = None
    logger.info("Collapsed %d probes to %d genes (%s)", len(probes), out.shape[1], method)
    return out


def map_identifiers(expr: pd.DataFrame, mapping: Mapping[object, str] | pd.Series) -> pd.DataFrame:
    """Rename columns through `mapping`; unmapped columns are dropped, duplicates averaged."""
    lookup = pd.Series(mapping)
    keep = [c for c in expr.columns if c in lookup.index and str(lookup[c]).strip() != ""]
    if not keep:
        raise ValueError("No expression columns could be mapped.")
    sub = expr.loc[:, keep].astype(float)
    new_names = [str(lookup[c]).strip() for c in keep]
    out = sub.T.groupby(new_names, sort=True).mean().T
    out.columns.name = None
    return out

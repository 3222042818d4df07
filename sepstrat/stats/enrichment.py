"""Gene-set enrichment and per-sample pathway scores."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np
import pandas as pd
from scipy import stats

from sepstrat.preprocess.normalize import standardize
from sepstrat.stats.multitest import bh_fdr

logger = logging.getLogger(__name__)


def read_gmt(path: str | Path) -> dict[str, list[str]]:
    """Read a GMT file: `name<TAB>description<TAB>gene1<TAB>gene2...` per line."""
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"GMT file not found: {src}")
    sets: dict[str, list[str]] = {}
    with open(src, "r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            parts = [p.strip() for p in line.rstrip("\n").split("\t")]
            if not parts or parts[0] == "":
                continue
            if len(parts) < 3:
                raise ValueError(f"Malformed GMT line {lineno} in {src.name}: expected at least 3 fields.")
            genes = list(dict.fromkeys(g for g in parts[2:] if g))
            sets[parts[0]] = genes
    return sets


def over_representation(
    hits: Iterable[str],
    universe: Iterable[str],
    gene_sets: Mapping[str, Iterable[str]],
    *,
    min_size: int = 5,
    max_size: int = 500,
) -> pd.DataFrame:
    """Hypergeometric over-representation of `hits` within each gene set."""
    universe_set = set(map(str, universe))
    hit_set = set(map(str, hits)) & universe_set
    N = len(universe_set)
    n = len(hit_set)
    rows = []
    for name, members in gene_sets.items():
        in_universe = set(map(str, members)) & universe_set
        K = len(in_universe)
        if K < int(min_size) or K > int(max_size):
            continue
        overlap = sorted(in_universe & hit_set)
        k = len(overlap)
        p = float(stats.hypergeom.sf(k - 1, N, K, n)) if n > 0 else 1.0
        expected = n * K / N if N else float("nan")
        rows.append(
            {
                "gene_set": name,
                "set_size": K,
                "overlap": k,
                "expected": expected,
                "fold_enrichment": (k / expected) if expected else float("nan"),
                "p": p,
                "genes": ";".join(overlap),
            }
        )
    out = pd.DataFrame(rows, columns=["gene_set", "set_size", "overlap", "expected", "fold_enrichment", "p", "genes"])
    out["q"] = bh_fdr(out["p"].to_numpy(dtype=float)) if not out.empty else []
    return out.sort_values("p", kind="mergesort").reset_index(drop=True)


def gene_set_scores(
    expr: pd.DataFrame, gene_sets: Mapping[str, Iterable[str]], min_genes: int = 3
) -> pd.DataFrame:
    """Per-sample score: mean z-score of the set's genes present in `expr`."""
    z = standardize(expr)
    cols = set(map(str, z.columns))
    z.columns = z.columns.astype(str)
    scores = {}
    for name, members in gene_sets.items():
        present = [g for g in dict.fromkeys(map(str, members)) if g in cols]
        if len(present) < int(min_genes):
            continue
        scores[name] = z[present].mean(axis=1)
    if not scores:
        logger.warning("No gene set had at least %d genes present.", int(min_genes))
    return pd.DataFrame(scores, index=expr.index)


def rank_based_enrichment(
    ranked: pd.Series,
    gene_sets: Mapping[str, Iterable[str]],
    *,
    min_size: int = 5,
    max_size: int = 500,
) -> pd.DataFrame:
    """Competitive rank test: statistics of in-set genes vs the rest (Mann-Whitney U).

    `ranked` maps gene -> statistic (e.g. moderated t). A positive
    `mean_rank_diff` means set members rank higher than other genes.
    """
    stat = pd.to_numeric(ranked, errors="coerce").dropna()
    stat.index = stat.index.astype(str)
    stat = stat[~stat.index.duplicated(keep="first")]
    ranks = stat.rank(method="average")
    rows = []
    for name, members in gene_sets.items():
        in_set = stat.index.isin(list(map(str, members)))
        k = int(in_set.sum())
        if k < int(min_size) or k > int(max_size) or k == stat.size:
            continue
        res = stats.mannwhitneyu(stat[in_set], stat[~in_set], alternative="two-sided")
        rows.append(
            {
                "gene_set": name,
                "set_size": k,
                "mean_rank_diff": float(ranks[in_set].mean() - ranks[~in_set].mean()),
                "mean_stat": float(stat[in_set].mean()),
                "U": float(res.statistic),
                "p": float(res.pvalue),
            }
        )
    out = pd.DataFrame(rows, columns=["gene_set", "set_size", "mean_rank_diff", "mean_stat", "U", "p"])
    out["q"] = bh_fdr(out["p"].to_numpy(dtype=float)) if not out.empty else []
    return out.sort_values("p", kind="mergesort").reset_index(drop=True)

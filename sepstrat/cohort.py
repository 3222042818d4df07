"""Cohort container: expression plus clinical metadata for one study."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import pandas as pd
import scipy.sparse as sp

from sepstrat.config import CohortConfig, build_cohort_config
from sepstrat.pipeline.io import detect_column
from sepstrat.preprocess import (
    annotate_probes,
    arcsinh_transform,
    collapse_probes,
    ensure_log2,
    pseudobulk,
    qpcr_delta_ct,
    read_probe_annotation,
    rnaseq_log_cpm,
)

logger = logging.getLogger(__name__)

_TABLE_SEPARATORS = {".csv": ",", ".tsv": "\t", ".txt": "\t"}
SAMPLE_ID_CANDIDATES = ("sample_id", "geo_accession", "sample")


def _read_h5ad(path: Path):
    import scanpy as sc

    return sc.read_h5ad(path)


def load_table(path: str | Path, *, index_col: int | str | None = 0, transpose: bool = False) -> pd.DataFrame:
    """Read a CSV/TSV/TXT, parquet or `.h5ad` table.

    `.h5ad` files return `X` as a samples x features DataFrame.
    `transpose=True` turns feature-by-sample files into samples x features.
    """
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"Input file '{src}' not found.")
    suffixes = [s.lower() for s in src.suffixes]
    suffix = suffixes[-1] if suffixes else ""
    if suffix == ".gz" and len(suffixes) > 1:
        suffix = suffixes[-2]

    if suffix == ".h5ad":
        adata = _read_h5ad(src)
        X = adata.X.toarray() if sp.issparse(adata.X) else adata.X
        frame = pd.DataFrame(X, index=adata.obs_names, columns=adata.var_names)
    elif suffix == ".parquet":
        frame = pd.read_parquet(src)
        if index_col is not None:
            col = frame.columns[index_col] if isinstance(index_col, int) else index_col
            frame = frame.set_index(col)
    elif suffix in _TABLE_SEPARATORS:
        frame = pd.read_csv(src, sep=_TABLE_SEPARATORS[suffix], index_col=index_col)
    else:
        raise ValueError(f"Unsupported table format for '{src}'.")

    if transpose:
        frame = frame.T
    frame.index = frame.index.astype(str)
    return frame


@dataclass
class Cohort:
    """Expression (samples x genes) and clinical table aligned on sample id."""

    name: str
    expression: pd.DataFrame
    clinical: pd.DataFrame
    platform: str = "microarray"
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        expr = self.expression.copy()
        clin = self.clinical.copy()
        expr.index = expr.index.astype(str)
        clin.index = clin.index.astype(str)
        if expr.index.has_duplicates:
            raise ValueError(f"Cohort '{self.name}': duplicate sample ids in expression data.")
        clin = clin[~clin.index.duplicated(keep="first")]

        shared = [s for s in expr.index if s in clin.index]
        if not shared:
            raise ValueError(f"Cohort '{self.name}': no sample ids shared by expression and clinical tables.")
        n_expr_only = int(expr.shape[0] - len(shared))
        n_clin_only = int(clin.shape[0] - len(shared))
        if n_expr_only or n_clin_only:
            logger.info(
                "Cohort %s: dropped %d expression-only and %d clinical-only samples.",
                self.name,
                n_expr_only,
                n_clin_only,
            )
        self.expression = expr.loc[shared]
        self.clinical = clin.loc[shared]
        self.metadata.setdefault("n_expression_only", n_expr_only)
        self.metadata.setdefault("n_clinical_only", n_clin_only)

    @property
    def n_samples(self) -> int:
        return int(self.expression.shape[0])

    def with_scores(self, scores: pd.DataFrame) -> pd.DataFrame:
        """Clinical table joined with per-sample stratification output."""
        overlap = [c for c in scores.columns if c in self.clinical.columns]
        clinical = self.clinical.drop(columns=overlap)
        joined = clinical.join(scores, how="left")
        joined.index.name = "sample_id"
        return joined


def load_expression(cfg: CohortConfig, log: logging.Logger | None = None) -> pd.DataFrame:
    """Load and normalise expression for the configured platform (samples x genes)."""
    log = log or logger
    if cfg.platform == "cytometry":
        adata = _read_h5ad(Path(cfg.expression_path))
        arcsinh_transform(adata, cofactor=float(cfg.extra.get("arcsinh_cofactor", 5.0)))
        profiles, n_cells = pseudobulk(
            adata,
            cfg.pseudobulk_sample_key,
            layer="arcsinh",
            func=str(cfg.extra.get("pseudobulk_func", "mean")),
            min_cells=int(cfg.extra.get("min_cells", 10)),
        )
        log.info(
            "Pseudobulk: %d samples from %d cells (median %d cells/sample)",
            profiles.shape[0],
            int(adata.n_obs),
            int(n_cells.median()),
        )
        profiles.index = profiles.index.astype(str)
        return profiles

    raw = load_table(cfg.expression_path, transpose=cfg.expression_transpose)
    log.info("Loaded %s expression: %d samples x %d features", cfg.platform, raw.shape[0], raw.shape[1])
    if cfg.platform == "rnaseq":
        return rnaseq_log_cpm(raw)
    if cfg.platform == "qpcr":
        return qpcr_delta_ct(raw, cfg.housekeeping, max_ct=float(cfg.extra.get("max_ct", 40.0)))

    expr = raw
    if cfg.annotation_path is not None:
        annotation = read_probe_annotation(cfg.annotation_path, cfg.probe_col, cfg.gene_col)
        annotated, mapping = annotate_probes(expr, annotation)
        expr = collapse_probes(annotated, mapping, method=cfg.collapse_method)
    return ensure_log2(expr)


def load_clinical(path: str | Path, sample_col: str | None = None) -> pd.DataFrame:
    """Clinical table indexed by sample id.

    Without `sample_col` the first of `sample_id`, `geo_accession`, `sample`
    present is used, falling back to the first column.
    """
    clinical = load_table(path, index_col=None)
    if clinical.shape[1] == 0:
        raise ValueError(f"Clinical table '{path}' has no columns.")
    id_col = detect_column(clinical, sample_col, (*SAMPLE_ID_CANDIDATES, str(clinical.columns[0])))
    clinical = clinical.set_index(id_col)
    clinical.index = clinical.index.astype(str)
    return clinical


def load_cohort(
    cfg: CohortConfig | Mapping[str, Any],
    *,
    base_dir: str | Path | None = None,
    log: logging.Logger | None = None,
) -> Cohort:
    """Build a `Cohort` from a cohort config, applying platform preprocessing."""
    if not isinstance(cfg, CohortConfig):
        cfg = build_cohort_config(dict(cfg), base_dir=base_dir)
    expression = load_expression(cfg, log)
    clinical = load_clinical(cfg.clinical_path, cfg.sample_col)
    return Cohort(name=cfg.name, expression=expression, clinical=clinical, platform=cfg.platform)

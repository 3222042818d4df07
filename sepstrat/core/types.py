"""Typed result containers for sepstrat core operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

SRS_CLASSES: tuple[str, ...] = ("SRS1", "SRS2", "SRS3")
PROB_COLUMNS: tuple[str, ...] = tuple(f"{c}_prob" for c in SRS_CLASSES)


@dataclass(frozen=True)
class GenePanel:
    """A fixed signature gene panel known by symbol and Ensembl id."""

    name: str
    symbols: tuple[str, ...]
    ensembl_ids: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.symbols)


@dataclass(frozen=True)
class AlignmentResult:
    """Output of `align_to_reference`.

    - `aligned`: query samples moved onto the reference manifold.
    - `pairs`: one row per mutual nearest neighbour pair (`query`, `reference`, `distance`).
    - `mnn_outlier`: True for query samples that are in no MNN pair.
    """

    aligned: pd.DataFrame
    correction: pd.DataFrame
    pairs: pd.DataFrame
    mnn_outlier: pd.Series
    k: int
    sigma: float

    @property
    def n_pairs(self) -> int:
        return int(self.pairs.shape[0])


@dataclass(frozen=True)
class StratificationResult:
    """Per-sample SRS/SRSq assignments for one cohort."""

    srs: pd.Series
    srsq: pd.Series
    probabilities: pd.DataFrame
    mnn_outlier: pd.Series
    aligned: pd.DataFrame
    reference_pcs: pd.DataFrame
    query_pcs: pd.DataFrame
    k: int
    n_mnn_pairs: int
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> pd.DataFrame:
        out = pd.DataFrame(
            {"SRS": self.srs.astype(str), "SRSq": self.srsq.astype(float)},
            index=self.srs.index,
        )
        out = out.join(self.probabilities)
        out["mnn_outlier"] = self.mnn_outlier.astype(bool)
        out.index.name = "sample_id"
        return out


@dataclass(frozen=True)
class SensitivityResult:
    """SRSq stability across alignment neighbourhood sizes."""

    srsq_by_k: pd.DataFrame
    srs_by_k: pd.DataFrame
    k_values: tuple[int, ...]
    skipped_k: tuple[int, ...]
    sd_threshold: float

    def summary(self) -> pd.DataFrame:
        sd = self.srsq_by_k.std(axis=1, ddof=1)
        rng = self.srsq_by_k.max(axis=1) - self.srsq_by_k.min(axis=1)
        n_labels = self.srs_by_k.nunique(axis=1)
        out = pd.DataFrame(
            {
                "SRSq_mean": self.srsq_by_k.mean(axis=1),
                "SRSq_sd": sd,
                "SRSq_range": rng,
                "n_distinct_SRS": n_labels.astype(int),
            }
        )
        out["unstable"] = out["SRSq_sd"].fillna(0.0) > float(self.sd_threshold)
        out["label_unstable"] = out["n_distinct_SRS"] > 1
        out.index.name = "sample_id"
        return out


def as_float_frame(name: str, frame: pd.DataFrame) -> pd.DataFrame:
    if not isinstance(frame, pd.DataFrame):
        raise TypeError(f"{name} must be a pandas DataFrame (samples x genes).")
    out = frame.apply(pd.to_numeric, errors="coerce").astype(float)
    if out.shape[0] == 0 or out.shape[1] == 0:
        raise ValueError(f"{name} must contain at least one sample and one gene.")
    if not np.all(np.isfinite(out.to_numpy())):
        raise ValueError(f"{name} contains NaN/inf values.")
    return out

"""Mutual-nearest-neighbour alignment of query samples onto a reference."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.spatial.distance import cdist
from sklearn.neighbors import NearestNeighbors

from sepstrat.core.types import AlignmentResult, as_float_frame

logger = logging.getLogger(__name__)

EPS = 1e-12


def _l2_normalize(x: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(x, axis=1, keepdims=True)
    return x / np.maximum(norms, EPS)


def find_mutual_neighbors(
    ref_space: np.ndarray, query_space: np.ndarray, k: int
) -> list[tuple[int, int]]:
    """Return sorted `(query_idx, ref_idx)` pairs that are mutual k-nearest neighbours."""
    k_i = int(k)
    if k_i < 1:
        raise ValueError("k must be >= 1.")
    n_ref = int(ref_space.shape[0])
    n_query = int(query_space.shape[0])
    k_q2r = min(k_i, n_ref)
    k_r2q = min(k_i, n_query)

    nn_ref = NearestNeighbors(n_neighbors=k_q2r).fit(ref_space)
    _, idx_q2r = nn_ref.kneighbors(query_space)
    nn_query = NearestNeighbors(n_neighbors=k_r2q).fit(query_space)
    _, idx_r2q = nn_query.kneighbors(ref_space)

    q_to_r = {(int(q), int(r)) for q, row in enumerate(idx_q2r) for r in row}
    r_to_q = {(int(q), int(r)) for r, row in enumerate(idx_r2q) for q in row}
    return sorted(q_to_r & r_to_q)


def align_to_reference(
    reference: pd.DataFrame,
    query: pd.DataFrame,
    *,
    k: int = 20,
    sigma: float | None = None,
    cosine_norm: bool = False,
) -> AlignmentResult:
    """Correct query samples towards the reference using MNN pair vectors.

    Neighbour search runs on L2-normalised profiles when `cosine_norm` is set;
    correction vectors are always computed on the input scale so that aligned
    values stay comparable with the reference the classifier was trained on.
    """
    ref = as_float_frame("reference", reference)
    qry = as_float_frame("query", query)
    if list(ref.columns) != list(qry.columns):
        raise ValueError("reference and query must share identical gene columns in the same order.")
    if int(k) < 1:
        raise ValueError("k must be >= 1.")

    R = ref.to_numpy(dtype=float)
    Q = qry.to_numpy(dtype=float)
    R_space = _l2_normalize(R) if cosine_norm else R
    Q_space = _l2_normalize(Q) if cosine_norm else Q

    pairs = find_mutual_neighbors(R_space, Q_space, int(k))
    if not pairs:
        raise ValueError(
            f"No mutual nearest neighbours found between query and reference (k={int(k)}); "
            "cannot align. Check that the query is log-scale expression on the same panel."
        )

    pair_q = np.array([p[0] for p in pairs], dtype=int)
    pair_r = np.array([p[1] for p in pairs], dtype=int)
    pair_vec = R[pair_r] - Q[pair_q]
    pair_dist = np.linalg.norm(R_space[pair_r] - Q_space[pair_q], axis=1)

    anchors = np.unique(pair_q)
    anchor_vec = np.vstack([pair_vec[pair_q == a].mean(axis=0) for a in anchors])

    d2 = cdist(Q_space, Q_space[anchors], metric="sqeuclidean")
    if sigma is None:
        positive = d2[d2 > 0]
        sigma_used = float(np.median(positive)) if positive.size else 1.0
    else:
        sigma_used = float(sigma)
    if not np.isfinite(sigma_used) or sigma_used <= 0:
        raise ValueError("sigma must be a positive finite number.")
    sigma_used = max(sigma_used, EPS)

    # shift by the row minimum so the nearest anchor never underflows
    w = np.exp(-(d2 - d2.min(axis=1, keepdims=True)) / sigma_used)
    correction = (w @ anchor_vec) / w.sum(axis=1, keepdims=True)

    aligned = pd.DataFrame(Q + correction, index=qry.index, columns=qry.columns)
    correction_df = pd.DataFrame(correction, index=qry.index, columns=qry.columns)
    pairs_df = pd.DataFrame(
        {
            "query": qry.index[pair_q].to_numpy(),
            "reference": ref.index[pair_r].to_numpy(),
            "distance": pair_dist,
        }
    )
    outlier = np.ones(qry.shape[0], dtype=bool)
    outlier[anchors] = False
    mnn_outlier = pd.Series(outlier, index=qry.index, name="mnn_outlier")

    logger.info(
        "MNN alignment: k=%d, %d pairs, %d/%d query samples anchored, sigma=%.4g",
        int(k),
        len(pairs),
        int(anchors.size),
        int(qry.shape[0]),
        sigma_used,
    )
    return AlignmentResult(
        aligned=aligned,
        correction=correction_df,
        pairs=pairs_df,
        mnn_outlier=mnn_outlier,
        k=int(k),
        sigma=sigma_used,
    )

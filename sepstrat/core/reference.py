"""Reference model: panel expression, labels and the fitted SRS/SRSq predictors."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import joblib
import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor

from sepstrat.core.genes import extract_panel, get_panel
from sepstrat.core.types import PROB_COLUMNS, SRS_CLASSES, GenePanel, as_float_frame

logger = logging.getLogger(__name__)

BUNDLE_FORMAT = "sepstrat-reference"
BUNDLE_VERSION = 1
METHODS = ("rf", "knn")


@dataclass
class ReferenceModel:
    """Everything needed to align and score a new cohort."""

    panel: GenePanel
    expression: pd.DataFrame
    srs: pd.Series
    srsq: pd.Series
    classifier: Any
    regressor: Any
    pca: PCA
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def n_samples(self) -> int:
        return int(self.expression.shape[0])

    def project(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Project panel expression onto the reference principal components."""
        self._check_columns(frame)
        coords = self.pca.transform(frame.to_numpy(dtype=float))
        cols = [f"PC{i + 1}" for i in range(coords.shape[1])]
        return pd.DataFrame(coords, index=frame.index, columns=cols)

    def _check_columns(self, frame: pd.DataFrame) -> None:
        if list(frame.columns) != list(self.panel.symbols):
            raise ValueError(
                f"Expected columns {list(self.panel.symbols)} for panel '{self.panel.name}', "
                f"got {list(frame.columns)}."
            )


def _validate_labels(srs: pd.Series, srsq: pd.Series, index: pd.Index) -> tuple[pd.Series, pd.Series]:
    srs_aligned = srs.reindex(index)
    srsq_aligned = pd.to_numeric(srsq.reindex(index), errors="coerce").astype(float)
    missing = index[srs_aligned.isna().to_numpy() | srsq_aligned.isna().to_numpy()]
    if len(missing) > 0:
        raise KeyError(
            f"{len(missing)} reference samples lack SRS/SRSq labels (first: {missing[0]})."
        )
    srs_aligned = srs_aligned.astype(str).str.strip()
    unknown = sorted(set(srs_aligned) - set(SRS_CLASSES))
    if unknown:
        raise ValueError(f"Unknown SRS labels {unknown}; expected a subset of {list(SRS_CLASSES)}.")
    if srs_aligned.nunique() < 2:
        raise ValueError("Reference must contain at least two SRS classes.")
    vals = srsq_aligned.to_numpy()
    if np.any((vals < 0.0) | (vals > 1.0)):
        raise ValueError("SRSq values must lie in [0, 1].")
    return srs_aligned, srsq_aligned


def _build_estimators(method: str, n_estimators: int, n_neighbors: int, seed: int) -> tuple[Any, Any]:
    if method == "rf":
        clf = RandomForestClassifier(
            n_estimators=int(n_estimators), random_state=int(seed), n_jobs=1
        )
        reg = RandomForestRegressor(
            n_estimators=int(n_estimators), random_state=int(seed), n_jobs=1
        )
    else:
        clf = KNeighborsClassifier(n_neighbors=int(n_neighbors), weights="distance")
        reg = KNeighborsRegressor(n_neighbors=int(n_neighbors), weights="distance")
    return clf, reg


def fit_reference(
    expr: pd.DataFrame,
    srs: pd.Series,
    srsq: pd.Series,
    *,
    panel: str | GenePanel = "davenport",
    method: str = "rf",
    n_estimators: int = 500,
    n_neighbors: int = 20,
    n_pcs: int = 3,
    seed: int = 0,
) -> ReferenceModel:
    """Train SRS and SRSq predictors on a labelled reference cohort."""
    method_key = str(method).strip().lower()
    if method_key not in METHODS:
        raise ValueError(f"Unknown method '{method}'. Use one of: {', '.join(METHODS)}.")
    gp = get_panel(panel)
    ref_expr = as_float_frame("reference expression", extract_panel(expr, gp))
    srs_aligned, srsq_aligned = _validate_labels(srs, srsq, ref_expr.index)

    n_neighbors_used = max(1, min(int(n_neighbors), ref_expr.shape[0] - 1))
    clf, reg = _build_estimators(method_key, n_estimators, n_neighbors_used, seed)
    X = ref_expr.to_numpy(dtype=float)
    clf.fit(X, srs_aligned.to_numpy())
    reg.fit(X, srsq_aligned.to_numpy())

    n_comp = max(1, min(int(n_pcs), X.shape[0], X.shape[1]))
    pca = PCA(n_components=n_comp, random_state=int(seed)).fit(X)

    logger.info(
        "Fitted %s reference on %d samples (%s panel, %d genes); class counts %s",
        method_key,
        X.shape[0],
        gp.name,
        X.shape[1],
        srs_aligned.value_counts().to_dict(),
    )
    return ReferenceModel(
        panel=gp,
        expression=ref_expr,
        srs=srs_aligned,
        srsq=srsq_aligned,
        classifier=clf,
        regressor=reg,
        pca=pca,
        method=method_key,
        params={
            "n_estimators": int(n_estimators),
            "n_neighbors": int(n_neighbors_used),
            "n_pcs": int(n_comp),
            "seed": int(seed),
        },
    )


def predict(model: ReferenceModel, aligned: pd.DataFrame) -> tuple[pd.Series, pd.Series, pd.DataFrame]:
    """Predict `(srs, srsq, probabilities)` for aligned panel expression."""
    model._check_columns(aligned)
    X = aligned.to_numpy(dtype=float)
    raw = model.classifier.predict_proba(X)
    probs = pd.DataFrame(0.0, index=aligned.index, columns=list(PROB_COLUMNS))
    for j, cls in enumerate(model.classifier.classes_):
        probs[f"{cls}_prob"] = raw[:, j]
    srs = pd.Series(
        np.asarray(SRS_CLASSES, dtype=object)[np.argmax(probs.to_numpy(), axis=1)],
        index=aligned.index,
        name="SRS",
    )
    srsq = pd.Series(
        np.clip(model.regressor.predict(X), 0.0, 1.0),
        index=aligned.index,
        name="SRSq",
    )
    return srs, srsq, probs


def save_reference(model: ReferenceModel, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump({"format": BUNDLE_FORMAT, "version": BUNDLE_VERSION, "model": model}, out)
    return out


def load_reference(path: str | Path) -> ReferenceModel:
    src = Path(path)
    if not src.exists():
        raise FileNotFoundError(f"Reference model not found: {src}")
    bundle = joblib.load(src)
    if not isinstance(bundle, dict) or bundle.get("format") != BUNDLE_FORMAT:
        raise ValueError(f"'{src}' is not a sepstrat reference bundle.")
    if int(bundle.get("version", -1)) != BUNDLE_VERSION:
        raise ValueError(
            f"Unsupported reference bundle version {bundle.get('version')} (expected {BUNDLE_VERSION})."
        )
    model = bundle["model"]
    if not isinstance(model, ReferenceModel):
        raise ValueError(f"'{src}' does not contain a ReferenceModel.")
    return model

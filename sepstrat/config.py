"""Configuration loading utilities for sepstrat pipelines."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

PLATFORMS = ("microarray", "rnaseq", "qpcr", "cytometry")


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a pipeline config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


@dataclass(frozen=True)
class CohortConfig:
    """Resolved settings for one cohort analysis run."""

    name: str
    platform: str
    expression_path: str
    clinical_path: str
    reference_path: str
    outdir: str
    expression_transpose: bool = False
    sample_col: str | None = None
    annotation_path: str | None = None
    probe_col: str = "ID"
    gene_col: str = "Gene Symbol"
    collapse_method: str = "max_mean"
    housekeeping: tuple[str, ...] = ()
    pseudobulk_sample_key: str = "sample_id"
    k: int = 20
    severity_cols: tuple[str, ...] = ()
    outcome_col: str | None = None
    duration_col: str | None = None
    event_col: str | None = None
    survival_horizon: float | None = None
    covariates: tuple[str, ...] = ()
    run_de: bool = False
    protein_path: str | None = None
    gmt_path: str | None = None
    run_sensitivity: bool = False
    seed: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


_REQUIRED_KEYS = ("name", "expression_path", "clinical_path", "reference_path")


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def build_cohort_config(
    cfg: dict[str, Any], *, base_dir: str | Path | None = None, outdir: str | Path | None = None
) -> CohortConfig:
    """Resolve a cohort config mapping into a `CohortConfig`.

    Relative paths are resolved against `base_dir` when given.
    """
    missing = [key for key in _REQUIRED_KEYS if key not in cfg]
    if missing:
        raise KeyError(f"Cohort config missing required keys: {', '.join(missing)}")

    platform = str(cfg.get("platform", "microarray")).strip().lower()
    if platform not in PLATFORMS:
        raise ValueError(
            f"Unknown platform '{platform}'. Expected one of: {', '.join(PLATFORMS)}."
        )

    def _path(value: Any) -> str | None:
        text = _optional_str(value)
        if text is None:
            return None
        p = Path(text)
        if base_dir is not None and not p.is_absolute():
            p = Path(base_dir) / p
        return p.as_posix()

    name = str(cfg["name"])
    if outdir is not None:
        out = Path(outdir).as_posix()
    else:
        out = str(_path(cfg.get("outdir", Path("results") / name)))
    known = set(CohortConfig.__dataclass_fields__)
    extra = {k: v for k, v in cfg.items() if k not in known}

    k = int(cfg.get("k", 20))
    if k < 1:
        raise ValueError("k must be positive.")

    return CohortConfig(
        name=name,
        platform=platform,
        expression_path=str(_path(cfg["expression_path"])),
        clinical_path=str(_path(cfg["clinical_path"])),
        reference_path=str(_path(cfg["reference_path"])),
        outdir=out,
        expression_transpose=bool(cfg.get("expression_transpose", False)),
        sample_col=_optional_str(cfg.get("sample_col")),
        annotation_path=_path(cfg.get("annotation_path")),
        probe_col=str(cfg.get("probe_col", "ID")),
        gene_col=str(cfg.get("gene_col", "Gene Symbol")),
        collapse_method=str(cfg.get("collapse_method", "max_mean")),
        housekeeping=_as_tuple(cfg.get("housekeeping")),
        pseudobulk_sample_key=str(cfg.get("pseudobulk_sample_key", "sample_id")),
        k=k,
        severity_cols=_as_tuple(cfg.get("severity_cols")),
        outcome_col=_optional_str(cfg.get("outcome_col")),
        duration_col=_optional_str(cfg.get("duration_col")),
        event_col=_optional_str(cfg.get("event_col")),
        survival_horizon=_optional_float(cfg.get("survival_horizon")),
        covariates=_as_tuple(cfg.get("covariates")),
        run_de=bool(cfg.get("run_de", False)),
        protein_path=_path(cfg.get("protein_path")),
        gmt_path=_path(cfg.get("gmt_path")),
        run_sensitivity=bool(cfg.get("run_sensitivity", False)),
        seed=int(cfg.get("seed", 0)),
        extra=extra,
    )

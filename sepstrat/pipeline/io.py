"""Pipeline I/O, logging, and utility helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import numpy as np
import pandas as pd


def ensure_dir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _json_default(value: Any) -> Any:
    if isinstance(value, Path):
        return value.as_posix()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if isinstance(value, np.ndarray):
        return [_json_safe(v) for v in value.tolist()]
    if isinstance(value, (float, np.floating)):
        v = float(value)
        return v if np.isfinite(v) else None
    if isinstance(value, np.integer):
        return int(value)
    return value


def write_json(path: str | Path, payload: dict[str, Any]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(_json_safe(payload), f, indent=2, sort_keys=True, allow_nan=False, default=_json_default)
    return out


def write_table(frame: pd.DataFrame, path: str | Path, *, index: bool = False) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(out, index=index)
    return out


def setup_logger(log_path: Path, logger_name: str) -> logging.Logger:
    ensure_dir(log_path.parent)
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(message)s")
    fh = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def detect_column(frame: pd.DataFrame, provided: str | None, candidates: Iterable[str]) -> str:
    if provided is not None:
        if provided in frame.columns:
            return str(provided)
        raise KeyError(f"Column '{provided}' not found.")
    for c in candidates:
        if c in frame.columns:
            return str(c)
    raise KeyError(f"Required column not found. Tried: {', '.join(candidates)}")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def write_runlog(
    outdir: Path,
    *,
    title: str,
    summary: dict[str, Any],
    warnings: list[str],
) -> Path:
    """Write a short markdown run log next to the pipeline outputs."""
    lines = [
        f"# {title}",
        "",
        f"- timestamp_utc: {now_utc_iso()}",
        f"- status: {summary.get('status', 'unknown')}",
    ]
    for key in ("cohort", "platform", "n_samples", "n_genes", "k", "n_mnn_pairs", "n_outliers"):
        if key in summary:
            lines.append(f"- {key}: {summary[key]}")
    skipped = summary.get("skipped_steps") or {}
    lines.extend(["", "## Skipped steps"])
    if skipped:
        for step, reason in sorted(skipped.items()):
            lines.append(f"- {step}: {reason}")
    else:
        lines.append("- none")
    lines.extend(["", "## Warnings"])
    if warnings:
        for warning in warnings:
            lines.append(f"- {warning}")
    else:
        lines.append("- none")

    runlog_path = outdir / "logs" / "runlog.md"
    runlog_path.parent.mkdir(parents=True, exist_ok=True)
    runlog_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return runlog_path

"""Signature gene panels and column resolution."""

from __future__ import annotations

import warnings
from typing import Iterable

import pandas as pd

from sepstrat.core.types import GenePanel

_DAVENPORT = (
    ("ARL14EP", "ENSG00000152219"),
    ("CCNB1IP1", "ENSG00000100814"),
    ("DYRK2", "ENSG00000127334"),
    ("ADGRE3", "ENSG00000131355"),
    ("MDC1", "ENSG00000137337"),
    ("TDRD9", "ENSG00000156414"),
    ("ZAP70", "ENSG00000115085"),
)

_EXTENDED_ONLY = (
    ("SLC25A38", "ENSG00000144659"),
    ("DNAJA3", "ENSG00000103423"),
    ("NAT10", "ENSG00000135372"),
    ("THOC1", "ENSG00000079134"),
    ("MRPS9", "ENSG00000135972"),
    ("PGS1", "ENSG00000087157"),
    ("UBAP1", "ENSG00000165006"),
    ("USP5", "ENSG00000111667"),
    ("TTC3", "ENSG00000182670"),
    ("SH3GLB1", "ENSG00000097033"),
    ("BMS1", "ENSG00000165733"),
    ("FBXO31", "ENSG00000103264"),
)


def _panel(name: str, genes: Iterable[tuple[str, str]]) -> GenePanel:
    pairs = list(genes)
    return GenePanel(
        name=name,
        symbols=tuple(s for s, _ in pairs),
        ensembl_ids=tuple(e for _, e in pairs),
    )


PANELS: dict[str, GenePanel] = {
    "davenport": _panel("davenport", _DAVENPORT),
    "extended": _panel("extended", _DAVENPORT + _EXTENDED_ONLY),
}


def get_panel(name: str | GenePanel) -> GenePanel:
    if isinstance(name, GenePanel):
        return name
    key = str(name).strip().lower()
    if key not in PANELS:
        raise KeyError(f"Unknown gene panel '{name}'. Available: {', '.join(sorted(PANELS))}")
    return PANELS[key]


def _normalize_id(value: object) -> str:
    text = str(value).strip().upper()
    if text.startswith("ENSG") and "." in text:
        text = text.split(".", 1)[0]
    return text


def resolve_panel_columns(columns: Iterable[object], panel: str | GenePanel) -> dict[str, object]:
    """Map panel symbols to the matching dataset columns.

    Columns may be Ensembl gene ids (version suffix ignored) or symbols
    (case-insensitive). Returns `{symbol: column}` in panel order.
    """
    gp = get_panel(panel)
    lookup: dict[str, object] = {}
    duplicates: list[str] = []
    for col in columns:
        key = _normalize_id(col)
        if key in lookup:
            duplicates.append(str(col))
            continue
        lookup[key] = col

    resolved: dict[str, object] = {}
    missing: list[str] = []
    for symbol, ensg in zip(gp.symbols, gp.ensembl_ids):
        hit = lookup.get(ensg.upper(), lookup.get(symbol.upper()))
        if hit is None:
            missing.append(f"{symbol} ({ensg})")
            continue
        resolved[symbol] = hit

    if missing:
        raise KeyError(
            f"Expression data is missing {len(missing)} of {len(gp)} '{gp.name}' panel genes: "
            + ", ".join(missing)
        )

    hit_keys = {_normalize_id(c) for c in resolved.values()}
    dup_hits = sorted({d for d in duplicates if _normalize_id(d) in hit_keys})
    if dup_hits:
        warnings.warn(
            f"Duplicate panel gene columns detected ({', '.join(dup_hits)}); keeping first occurrence.",
            RuntimeWarning,
            stacklevel=2,
        )
    return resolved


def extract_panel(expr: pd.DataFrame, panel: str | GenePanel) -> pd.DataFrame:
    """Return the samples x panel-gene submatrix, columns renamed to panel symbols."""
    gp = get_panel(panel)
    mapping = resolve_panel_columns(expr.columns, gp)
    positions = []
    cols = list(expr.columns)
    for symbol in gp.symbols:
        positions.append(cols.index(mapping[symbol]))
    sub = expr.iloc[:, positions].copy()
    sub.columns = list(gp.symbols)
    return sub

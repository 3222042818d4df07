from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from sepstrat.preprocess.annotation import (
    annotate_probes,
    collapse_probes,
    map_identifiers,
    read_probe_annotation,
)


def _expr() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "p1": [1.0, 2.0, 3.0],
            "p2": [5.0, 5.0, 5.0],
            "p3": [0.0, 10.0, 20.0],
            "p4": [7.0, 8.0, 9.0],
            "p5": [4.0, 4.0, 4.0],
        },
        index=["s1", "s2", "s3"],
    )


def test_read_annotation_skips_geo_comment_header(tmp_path: Path):
    src = tmp_path / "GPL.txt"
    src.write_text(
        "#ID = probe id\n#Gene Symbol = symbol\nID\tGene Symbol\tOther\n"
        "p1\tTDRD9\tx\np2\tTDRD9\tx\np3\t\tx\np4\tZAP70 /// ZAP70-AS\tx\np1\tDUP\tx\n",
        encoding="utf-8",
    )
    ann = read_probe_annotation(src)
    assert ann.to_dict() == {"p1": "TDRD9", "p2": "TDRD9", "p4": "ZAP70 /// ZAP70-AS"}
    assert ann.index.name == "probe"


def test_read_annotation_missing_column(tmp_path: Path):
    src = tmp_path / "ann.csv"
    src.write_text("ID,Symbol\np1,A\n", encoding="utf-8")
    with pytest.raises(KeyError, match="Gene Symbol"):
        read_probe_annotation(src)
    ann = read_probe_annotation(src, gene_col="Symbol")
    assert ann["p1"] == "A"


def test_annotate_drops_or_splits_multi_gene_probes():
    ann = pd.Series({"p1": "A", "p2": "A", "p3": "B /// C", "p9": "Z"})
    sub, mapping = annotate_probes(_expr(), ann)
    assert list(sub.columns) == ["p1", "p2"]
    assert mapping.to_dict() == {"p1": "A", "p2": "A"}

    sub, mapping = annotate_probes(_expr(), ann, multi_gene="first")
    assert mapping["p3"] == "B"
    with pytest.raises(ValueError, match="multi_gene"):
        annotate_probes(_expr(), ann, multi_gene="keep")
    with pytest.raises(ValueError, match="No expression columns"):
        annotate_probes(_expr(), pd.Series({"zz": "A"}))


@pytest.mark.parametrize(
    "method, expected_a",
    [
        ("max_mean", [5.0, 5.0, 5.0]),
        ("max_var", [1.0, 2.0, 3.0]),
        ("mean", [3.0, 3.5, 4.0]),
        ("median", [3.0, 3.5, 4.0]),
    ],
)
def test_collapse_methods(method, expected_a):
    mapping = {"p1": "A", "p2": "A", "p3": "B", "p4": "B"}
    out = collapse_probes(_expr(), mapping, method=method)
    assert list(out.columns) == ["A", "B"]
    np.testing.assert_allclose(out["A"].to_numpy(), expected_a)


def test_collapse_max_mean_picks_highest_mean_probe_for_b():
    out = collapse_probes(_expr(), {"p3": "B", "p4": "B"}, method="max_mean")
    np.testing.assert_allclose(out["B"].to_numpy(), [0.0, 10.0, 20.0])


def test_collapse_rejects_unknown_method_and_empty_mapping():
    with pytest.raises(ValueError, match="Unknown collapse method"):
        collapse_probes(_expr(), {"p1": "A"}, method="sum")
    with pytest.raises(ValueError, match="No expression columns"):
        collapse_probes(_expr(), {"q1": "A"})


def test_map_identifiers_averages_duplicates_and_drops_unmapped():
    out = map_identifiers(_expr(), {"p1": "A", "p5": "A", "p4": "B", "p2": " "})
    assert list(out.columns) == ["A", "B"]
    np.testing.assert_allclose(out["A"].to_numpy(), [2.5, 3.0, 3.5])

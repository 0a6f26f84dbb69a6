from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

from poscraper.posconfig import OutputConfig
from poscraper.posmerge import EmptyMergeError, MergeWriter, generate_output_name, unique_path

TABLE = [
    ["identifier", "S. no.", "SKU", "Qty"],
    ["FKPO0001", "1", "A1", 2],
    ["FKPO0001", "2", "A2", 4],
    ["FKPO0002", "1", "B1", 1],
]


def test_generate_output_name_uses_second_resolution_timestamp() -> None:
    now = datetime(2024, 3, 5, 14, 7, 9, 123456)
    assert generate_output_name("merged_documents", ".xlsx", now) == (
        "merged_documents_2024-03-05T14-07-09.xlsx"
    )


def test_unique_path_avoids_overwriting(tmp_path: Path) -> None:
    target = tmp_path / "merged.xlsx"
    assert unique_path(target) == target
    target.touch()
    (tmp_path / "merged_1.xlsx").touch()
    assert unique_path(target) == tmp_path / "merged_2.xlsx"


def test_write_xlsx_round_trips_header_and_rows(tmp_path: Path) -> None:
    writer = MergeWriter(OutputConfig(directory=tmp_path))

    out = writer.write(TABLE)

    assert out.parent == tmp_path
    assert out.name.startswith("merged_documents_")
    frame = pd.read_excel(out, sheet_name="Merged", dtype=object)
    assert list(frame.columns) == TABLE[0]
    assert len(frame) == 3
    assert frame["SKU"].tolist() == ["A1", "A2", "B1"]


def test_write_csv(tmp_path: Path) -> None:
    writer = MergeWriter(OutputConfig(directory=tmp_path, extension=".csv"))

    out = writer.write(TABLE)

    assert out.suffix == ".csv"
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "identifier,S. no.,SKU,Qty"
    assert len(lines) == 4


def test_header_only_table_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(EmptyMergeError):
        MergeWriter(OutputConfig(directory=tmp_path)).write([TABLE[0]])
    assert list(tmp_path.iterdir()) == []

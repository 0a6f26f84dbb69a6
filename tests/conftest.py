import csv
from pathlib import Path

import pytest


def po_grid(po: str, header: list[str], items: list[list], supplier="Acme Traders"):
    """A purchase-order style sheet: metadata anchors, line items, trailer."""
    return [
        ["PURCHASE ORDER"],
        [
            "PO#",
            po,
            "CATEGORY",
            "Apparel",
            "ORDER DATE",
            "2024-01-15",
            "PO Expiry",
            "2024-02-15",
        ],
        ["SUPPLIER NAME", supplier],
        ["ADDRESS", "Bengaluru"],
        ["GSTIN", "29ABCDE1234F1Z5"],
        ["CONTACT", "ops@example.com"],
        ["CREDIT TERM", "30 days"],
        ["Line items"],
        header,
        *items,
        ["Total", "", "99"],
        ["Important", "Goods must match the PO"],
    ]


def write_csv(path: Path, grid: list[list]) -> Path:
    with path.open("w", newline="", encoding="utf-8") as f:
        csv.writer(f).writerows(grid)
    return path


@pytest.fixture
def make_po(tmp_path: Path):
    def _make(name: str, po: str, header: list[str], items: list[list], **kw) -> Path:
        return write_csv(tmp_path / name, po_grid(po, header, items, **kw))

    return _make

"""
poscraper.posreconcile
======================

Two-pass schema reconciliation of downloaded per-record spreadsheets.

Each downloaded document holds a metadata block in fixed anchor rows, a
line-item header row (identified by a sentinel first cell such as
``S. no.``), line-item rows numbered 1..n and an optional trailer. Documents
are generated independently and may add, drop or reorder line-item columns,
so rows cannot simply be concatenated.

Pass 1 builds the canonical schema: the fixed metadata headers followed by
the union of every document's line-item headers in first-seen order. Pass 2
projects every line-item row onto that schema through a per-document column
map, so a value always lands under its own header.
"""

from __future__ import annotations

import csv
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from .posconfig import ReconcileConfig
from .posdownload import RawDocument

logger = logging.getLogger(__name__)

EXCEL_SUFFIXES = {".xls", ".xlsx", ".xlsm"}

Grid = list[list[Any]]


class DocumentParseError(ValueError):
    """A downloaded document could not be read as a grid."""


@dataclass
class SkippedDocument:
    path: Path
    reason: str


@dataclass
class LineItemLayout:
    """Where a document's line items live and which columns they carry."""

    header_row: int
    columns: list[tuple[int, str]]

    @property
    def headers(self) -> list[str]:
        return [label for _, label in self.columns]


@dataclass
class ReconcileResult:
    schema: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)
    skipped: list[SkippedDocument] = field(default_factory=list)
    documents_used: int = 0

    def table(self) -> list[list[Any]]:
        """Return the merged table: the schema as header row followed by all rows."""
        return [list(self.schema), *self.rows]


@dataclass
class _ParsedDocument:
    document: RawDocument
    grid: Grid
    layout: LineItemLayout


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def cell_text(value: Any) -> str:
    """Render a cell as trimmed text; empty cells become ``""`` and ``5.0`` becomes ``"5"``."""
    if is_empty(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime) and value.time() == datetime.min.time():
        return value.date().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return re.sub(r"\s+", " ", str(value)).strip()


def normalize_label(value: Any) -> str:
    """Lower-case a label and drop whitespace and punctuation: ``"S. no."`` -> ``"sno"``."""
    return re.sub(r"[\W_]+", "", cell_text(value).lower())


def is_positive_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, float):
        return not math.isnan(value) and value.is_integer() and value > 0
    if isinstance(value, str):
        s = value.strip()
        return s.isascii() and s.isdigit() and int(s) > 0
    return False


def read_grid(path: str | Path, sheet: int | str = 0) -> Grid:
    """
    Parse a downloaded document into a 2-D grid of raw cell values.

    Excel workbooks are read with :func:`pandas.read_excel` without a header
    row. CSV files go through :mod:`csv` because their rows are ragged. Row
    positions are preserved (blank rows included) since metadata is read from
    fixed anchor rows. Empty cells become ``None``.

    Raises :class:`DocumentParseError` for unreadable or empty files.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in EXCEL_SUFFIXES and suffix != ".csv":
        msg = f"Unsupported document type: {suffix or '<none>'}"
        raise DocumentParseError(msg)

    try:
        if suffix == ".csv":
            with path.open(newline="", encoding="utf-8-sig") as f:
                grid = [[v if v.strip() else None for v in row] for row in csv.reader(f)]
        else:
            frame = pd.read_excel(path, sheet_name=sheet, header=None, dtype=object)
            frame = frame.astype(object).where(frame.notna(), None)
            grid = [list(row) for row in frame.itertuples(index=False, name=None)]
    except Exception as exc:  # noqa: BLE001 - excel engines raise their own error types
        msg = f"Cannot read {path.name}: {exc}"
        raise DocumentParseError(msg) from exc

    if all(all(is_empty(v) for v in row) for row in grid):
        msg = f"Document {path.name} is empty"
        raise DocumentParseError(msg)
    return grid


class SchemaReconciler:
    """
    Merge documents with differing line-item columns into one canonical table.

    ``reconcile`` runs both passes and returns a :class:`ReconcileResult`.
    Documents that cannot be parsed or carry no line-item header row are
    skipped and reported in ``ReconcileResult.skipped``.
    """

    def __init__(self, cfg: ReconcileConfig | None = None) -> None:
        self.cfg = cfg or ReconcileConfig()
        self._sentinels = {normalize_label(s) for s in self.cfg.header_sentinels}
        self._markers = [m.lower() for m in self.cfg.terminal_markers]

    @property
    def metadata_headers(self) -> list[str]:
        return [f.header for f in self.cfg.metadata]

    def find_line_items(self, grid: Grid) -> LineItemLayout | None:
        """
        Locate the line-item header row and its ordered, de-duplicated labels.

        Returns None when no row starts with a header sentinel.
        """
        for index, row in enumerate(grid):
            if not row or normalize_label(row[0]) not in self._sentinels:
                continue
            columns: list[tuple[int, str]] = []
            seen: set[str] = set()
            for col, value in enumerate(row):
                label = cell_text(value)
                if not label or label in seen:
                    continue
                seen.add(label)
                columns.append((col, label))
            return LineItemLayout(index, columns)
        return None

    def extract_metadata(self, grid: Grid) -> list[str]:
        """Read each metadata field from its anchor row; missing fields are ``""``."""
        values = []
        for meta in self.cfg.metadata:
            value = ""
            row = grid[meta.row] if 0 <= meta.row < len(grid) else []
            for i in range(len(row) - 1):
                if cell_text(row[i]) == meta.label:
                    value = cell_text(row[i + 1])
                    break
            values.append(value)
        return values

    def build_schema(self, layouts: list[LineItemLayout]) -> list[str]:
        """
        Pass 1: the metadata headers followed by every line-item header in first-seen order.

        A line-item header that collides with a metadata header is renamed
        with the first ``.n`` suffix that no document uses as a literal
        label; every document maps that header to the same renamed column.
        The layouts' labels are rewritten to the canonical names in place so
        pass 2 maps them consistently.
        """
        schema = list(self.metadata_headers)
        reserved = set(schema)
        taken = reserved | {label for layout in layouts for label in layout.headers}
        renames: dict[str, str] = {}
        seen = set(schema)
        for layout in layouts:
            renamed = []
            for col, label in layout.columns:
                if label in reserved:
                    if label not in renames:
                        n = 1
                        while f"{label}.{n}" in taken:
                            n += 1
                        renames[label] = f"{label}.{n}"
                        taken.add(renames[label])
                    label = renames[label]
                renamed.append((col, label))
                if label not in seen:
                    seen.add(label)
                    schema.append(label)
            layout.columns = renamed
        return schema

    def column_map(self, layout: LineItemLayout, schema: list[str]) -> dict[int, int]:
        """Map each source column index to its canonical column index."""
        offset = len(self.metadata_headers)
        canonical = {label: i for i, label in enumerate(schema[offset:])}
        return {col: offset + canonical[label] for col, label in layout.columns}

    def _is_terminal(self, value: Any) -> bool:
        text = cell_text(value).lower()
        return bool(text) and any(m in text for m in self._markers)

    def line_item_rows(self, grid: Grid, layout: LineItemLayout) -> list[list[Any]]:
        """Rows after the header whose first cell is a positive integer, up to the trailer."""
        rows = []
        for row in grid[layout.header_row + 1 :]:
            if not row:
                continue
            first = row[0]
            if is_positive_integer(first):
                rows.append(row)
            elif self._is_terminal(first):
                break
        return rows

    def project(
        self, grid: Grid, layout: LineItemLayout, schema: list[str],
    ) -> list[list[Any]]:
        """Pass 2 for one document: fixed-width canonical rows."""
        mapping = self.column_map(layout, schema)
        metadata = self.extract_metadata(grid)
        width = len(schema)
        projected = []
        for row in self.line_item_rows(grid, layout):
            out: list[Any] = [""] * width
            out[: len(metadata)] = metadata
            for col, value in enumerate(row):
                target = mapping.get(col)
                if target is None or is_empty(value):
                    continue
                out[target] = value.strip() if isinstance(value, str) else value
            projected.append(out)
        return projected

    def reconcile(self, documents: list[RawDocument]) -> ReconcileResult:
        result = ReconcileResult()
        parsed: list[_ParsedDocument] = []

        for doc in documents:
            try:
                grid = read_grid(doc.path, self.cfg.sheet)
            except DocumentParseError as exc:
                logger.warning("Skipping document %s: %s", doc.global_index, exc)
                result.skipped.append(SkippedDocument(doc.path, str(exc)))
                continue
            layout = self.find_line_items(grid)
            if layout is None:
                reason = "no line-item header row"
                logger.warning("Skipping document %s: %s", doc.path.name, reason)
                result.skipped.append(SkippedDocument(doc.path, reason))
                continue
            parsed.append(_ParsedDocument(doc, grid, layout))

        result.schema = self.build_schema([p.layout for p in parsed])
        logger.info(
            "Canonical schema has %s column(s) from %s document(s)",
            len(result.schema),
            len(parsed),
        )

        for p in parsed:
            rows = self.project(p.grid, p.layout, result.schema)
            logger.info("Added %s row(s) from %s", len(rows), p.document.path.name)
            result.rows.extend(rows)
        result.documents_used = len(parsed)
        return result

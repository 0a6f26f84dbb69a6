"""poscraper.posmerge: write the reconciled table to one output file."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd

from .posconfig import OutputConfig

logger = logging.getLogger(__name__)


class EmptyMergeError(ValueError):
    """Raised when a merged table has no data rows beyond its header."""


def generate_output_name(
    prefix: str = "merged_documents",
    extension: str = ".xlsx",
    now: datetime | None = None,
) -> str:
    """Return ``<prefix>_<YYYY-MM-DDTHH-MM-SS><extension>``, truncated to whole seconds."""
    stamp = (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"{prefix}_{stamp}{extension}"


def unique_path(path: Path) -> Path:
    """Return ``path`` or, if it exists, the first free ``<stem>_<n><suffix>`` sibling."""
    if not path.exists():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.stem}_{n}{path.suffix}")
        if not candidate.exists():
            return candidate
        n += 1


class MergeWriter:
    """
    Serialize a merged table (header row followed by data rows).

    ``.xlsx`` output goes through :meth:`pandas.DataFrame.to_excel` with the
    openpyxl engine; ``.csv`` through :meth:`pandas.DataFrame.to_csv`.
    """

    def __init__(self, cfg: OutputConfig | None = None) -> None:
        self.cfg = cfg or OutputConfig()

    def target_path(self, now: datetime | None = None) -> Path:
        name = generate_output_name(self.cfg.prefix, self.cfg.extension, now)
        return unique_path(Path(self.cfg.directory) / name)

    def write(self, table: list[list[Any]], path: str | Path | None = None) -> Path:
        if len(table) < 2:
            msg = "Merged table has no data rows"
            raise EmptyMergeError(msg)

        header, rows = table[0], table[1:]
        out = Path(path) if path else self.target_path()
        out.parent.mkdir(parents=True, exist_ok=True)

        dframe = pd.DataFrame(rows, columns=header)
        if out.suffix.lower() == ".csv":
            dframe.to_csv(out, index=False, encoding="utf-8")
        else:
            dframe.to_excel(
                out, index=False, sheet_name=self.cfg.sheet_name, engine="openpyxl",
            )

        logger.info("Merged file saved: %s (%s rows + 1 header row)", out, len(rows))
        return out

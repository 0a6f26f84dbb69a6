"""
poscraper.posdownload
=====================

Per-row artifact downloads across the paginated document list.

:class:`RowDownloadCoordinator` owns the run's temporary directory. It walks
the rows of the current page strictly in order, triggers one download per
row and records, rather than raises, any single-row failure. Pagination is
delegated to a :class:`poscraper.pospaginate.PaginationController`.
"""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .posconfig import RowsConfig, SelectorCandidate
from .poslocate import LocatorResolver
from .pospaginate import PaginationController

logger = logging.getLogger(__name__)


@dataclass
class RawDocument:
    """One downloaded per-row artifact."""

    path: Path
    global_index: int


@dataclass
class RowFailure:
    global_index: int
    page: int
    row: int
    reason: str


@dataclass
class RowCollection:
    """The row locator chosen for a page and where data rows start."""

    locator: Locator | None
    candidate: SelectorCandidate | None
    count: int
    start: int = 0

    @property
    def available(self) -> int:
        return max(0, self.count - self.start)


@dataclass
class PageDownload:
    documents: list[RawDocument] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)
    available: int = 0
    attempted: int = 0


@dataclass
class DownloadReport:
    documents: list[RawDocument] = field(default_factory=list)
    failures: list[RowFailure] = field(default_factory=list)
    pages: int = 0
    stop_reason: str = ""

    @property
    def downloaded(self) -> int:
        return len(self.documents)


def sanitize_filename(name: str) -> str:
    name = re.sub(r"[\/\\\:\*\?\"\<\>\|]+", " ", name).strip()
    name = re.sub(r"\s+", " ", name)
    return name[:180]


class RowDownloadCoordinator:
    """
    Download one artifact per list row, page after page, up to a limit.

    Rows are processed in document order and every attempted row receives the
    next global index, so indexes increase monotonically across the run even
    when individual rows fail.
    """

    def __init__(
        self,
        page: Page,
        resolver: LocatorResolver,
        paginator: PaginationController,
        cfg: RowsConfig,
        temp_dir: Path,
        max_pages: int = 0,
    ) -> None:
        self.page = page
        self.resolver = resolver
        self.paginator = paginator
        self.cfg = cfg
        self.temp_dir = Path(temp_dir)
        self.max_pages = max_pages
        self._next_index = 1

    def download_all_across_pages(self, limit: int = 0) -> DownloadReport:
        """
        Download up to ``limit`` artifacts (0 = unbounded) across all pages.

        Stops when the limit is reached, when there is no next page, when a
        page transition cannot be verified, or when ``max_pages`` is hit.
        """
        max_items = limit if limit > 0 else math.inf
        report = DownloadReport()

        while True:
            remaining = max_items - report.downloaded
            if remaining <= 0:
                report.stop_reason = "limit"
                break

            report.pages += 1
            logger.info("Processing page %s", report.pages)
            result = self.download_from_current_page(remaining, page_number=report.pages)
            report.documents.extend(result.documents)
            report.failures.extend(result.failures)
            logger.info("Total downloaded so far: %s", report.downloaded)

            if report.downloaded >= max_items:
                report.stop_reason = "limit"
                break
            if self.max_pages and report.pages >= self.max_pages:
                report.stop_reason = "max_pages"
                break
            if not self.paginator.has_next_page():
                report.stop_reason = "last_page"
                break
            if not self.paginator.go_to_next_page():
                report.stop_reason = "transition_failed"
                break

        logger.info(
            "Download complete: %s file(s), %s failure(s) from %s page(s); stop=%s",
            report.downloaded,
            len(report.failures),
            report.pages,
            report.stop_reason,
        )
        return report

    def download_from_current_page(
        self, remaining: float = math.inf, page_number: int = 1,
    ) -> PageDownload:
        rows = self.collect_rows()
        result = PageDownload(available=rows.available)
        if rows.locator is None or rows.available == 0:
            logger.warning("No document rows found on page %s", page_number)
            return result

        to_process = int(min(rows.available, remaining))
        logger.info(
            "Found %s row(s) on page %s, downloading %s",
            rows.available,
            page_number,
            to_process,
        )
        for i in range(to_process):
            global_index = self._next_index
            self._next_index += 1
            result.attempted += 1
            row = rows.locator.nth(rows.start + i)
            doc, reason = self.download_row(row, global_index)
            if doc is None:
                logger.warning(
                    "Row %s on page %s (document %s) failed: %s",
                    i + 1,
                    page_number,
                    global_index,
                    reason,
                )
                result.failures.append(
                    RowFailure(global_index, page_number, i + 1, reason),
                )
                continue
            result.documents.append(doc)
            logger.info("Downloaded document %s: %s", global_index, doc.path.name)

        logger.info(
            "Downloaded %s/%s file(s) from page %s",
            len(result.documents),
            to_process,
            page_number,
        )
        return result

    def collect_rows(self) -> RowCollection:
        """
        Resolve the page's row collection, retrying while the table renders.

        The first strategy whose row count exceeds ``min_rows`` wins. When
        retries run out the largest collection seen is used as is.
        """
        best = RowCollection(None, None, 0)
        for attempt in range(1, self.cfg.retries + 1):
            chosen = None
            for cand in self.cfg.row.candidates:
                loc = self.resolver.locator(self.page, cand)
                try:
                    count = loc.count()
                except (PlaywrightError, PlaywrightTimeoutError):
                    continue
                if not count:
                    continue
                rows = RowCollection(loc, cand, count, self._header_offset(loc, cand))
                if rows.available > best.available:
                    best = rows
                if rows.available > self.cfg.min_rows:
                    chosen = rows
                    break
            if chosen is not None:
                return chosen
            logger.info(
                "Waiting for table rows (attempt %s/%s, best=%s)",
                attempt,
                self.cfg.retries,
                best.available,
            )
            if attempt < self.cfg.retries:
                self.page.wait_for_timeout(self.cfg.retry_delay_ms)
        return best

    def _header_offset(self, loc: Locator, cand: SelectorCandidate) -> int:
        if not cand.header_probe:
            return 0
        try:
            if loc.first.locator(cand.header_probe).count() > 0:
                logger.debug("Skipping header row for %r", cand.selector)
                return 1
        except (PlaywrightError, PlaywrightTimeoutError):
            pass
        return 0

    def find_trigger(self, row: Locator) -> Locator | None:
        match = self.resolver.resolve(row, self.cfg.trigger, self.cfg.trigger_budget_ms)
        if match is not None:
            return match.locator
        return self.resolver.text_scan(row, self.cfg.trigger_text)

    def download_row(self, row: Locator, global_index: int) -> tuple[RawDocument | None, str]:
        """
        Trigger and save one row's artifact.

        Returns ``(document, "")`` on success or ``(None, reason)`` on failure.
        """
        trigger = self.find_trigger(row)
        if trigger is None:
            return None, "download trigger not found"

        try:
            with self.page.expect_download(timeout=self.cfg.download_timeout_ms) as info:
                trigger.click()
            download = info.value
        except PlaywrightTimeoutError:
            return None, "download did not start before timeout"
        except PlaywrightError as exc:
            return None, f"download failed: {exc}"

        target = self.temp_dir / self._target_name(download.suggested_filename, global_index)
        try:
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            download.save_as(target)
        except (PlaywrightError, OSError) as exc:
            return None, f"could not save download: {exc}"

        self.page.wait_for_timeout(self.cfg.pause_ms)
        return RawDocument(target, global_index), ""

    def _target_name(self, suggested: str | None, global_index: int) -> str:
        safe = sanitize_filename(suggested or "")
        if not safe:
            safe = (
                f"{self.cfg.filename_prefix}_{global_index}_{int(time.time() * 1000)}"
                f"{self.cfg.default_extension}"
            )
        return f"{global_index:04d}_{safe}"

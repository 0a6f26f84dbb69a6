"""
poscraper.poscraper.

Runtime that drives one download-and-merge run:

- manage the Playwright lifecycle (browser, context, page);
- reuse or persist storage_state per :class:`SessionConfig`;
- wait for an authenticated session positioned on the document list;
- download one artifact per row across pages
  (:class:`~poscraper.posdownload.RowDownloadCoordinator`);
- reconcile the artifacts into one canonical table
  (:class:`~poscraper.posreconcile.SchemaReconciler`);
- write it (:class:`~poscraper.posmerge.MergeWriter`) and clean up.

The public contract:

- DocumentScraper(cfg, auth=None).run(limit) -> RunResult

A run either completes or raises a :class:`ScrapeError`; nothing is written
when no artifact was downloaded or no data row survived reconciliation.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from .posconfig import Config, load_config
from .posdownload import RowDownloadCoordinator, RowFailure
from .poslocate import LocatorResolver
from .posmerge import MergeWriter
from .pospaginate import PaginationController
from .posreconcile import SchemaReconciler, SkippedDocument
from .posession import (
    _state_file,
    is_logged_in,
    load_context,
    navigate,
    save_context,
    wait_until,
)

logger = logging.getLogger(__name__)


class ScrapeError(RuntimeError):
    """Terminal run failure; no output is written."""


class NoDocumentsError(ScrapeError):
    pass


class NoDataRowsError(ScrapeError):
    pass


@dataclass
class CleanupOutcome:
    removed: bool
    reason: str = ""


@dataclass
class RunResult:
    output: Path
    rows: int
    columns: int
    downloaded: int
    pages: int
    stop_reason: str
    failures: list[RowFailure] = field(default_factory=list)
    skipped: list[SkippedDocument] = field(default_factory=list)
    cleanup: CleanupOutcome = field(default_factory=lambda: CleanupOutcome(True))


# ----------------------------
# Authentication hook (optional)
# ----------------------------


class AuthStrategy:
    """
    Base class for optional authentication strategies.

    Sign-in is outside this package. An implementation may automate it; the
    default does nothing and the runtime waits for the user to finish the
    login by hand in a headed browser.
    """

    def login(
        self,
        _page: Page,
        _cfg: Config,
        _resolver: LocatorResolver,
    ) -> None:  # pragma: no cover
        return


# ----------------------------
# Pipeline
# ----------------------------


def cleanup_temp(temp_dir: Path) -> CleanupOutcome:
    """Remove the run's temporary directory; failures are reported, never raised."""
    try:
        shutil.rmtree(temp_dir)
    except OSError as exc:
        logger.warning("Could not remove temp directory %s: %s", temp_dir, exc)
        return CleanupOutcome(False, str(exc))
    logger.info("Removed temp directory %s", temp_dir)
    return CleanupOutcome(True)


def run_pipeline(
    coordinator: RowDownloadCoordinator,
    reconciler: SchemaReconciler,
    writer: MergeWriter,
    limit: int,
    temp_dir: Path,
) -> RunResult:
    """
    Download, reconcile, write, then clean up.

    Raises :class:`NoDocumentsError` when nothing was downloaded and
    :class:`NoDataRowsError` when no data row survived reconciliation. The
    temp directory is only removed after the merged file is written.
    """
    report = coordinator.download_all_across_pages(limit)
    if not report.documents:
        msg = f"No documents were downloaded ({len(report.failures)} row failure(s))"
        raise NoDocumentsError(msg)

    merged = reconciler.reconcile(report.documents)
    if not merged.rows:
        msg = (
            f"No data rows in {report.downloaded} downloaded document(s); "
            f"{len(merged.skipped)} skipped. Temp files kept in {temp_dir}"
        )
        raise NoDataRowsError(msg)

    output = writer.write(merged.table())
    cleanup = cleanup_temp(temp_dir)

    return RunResult(
        output=output,
        rows=len(merged.rows),
        columns=len(merged.schema),
        downloaded=report.downloaded,
        pages=report.pages,
        stop_reason=report.stop_reason,
        failures=report.failures,
        skipped=merged.skipped,
        cleanup=cleanup,
    )


# ----------------------------
# Scraper runtime
# ----------------------------


class DocumentScraper:
    """
    Owns the browser session for one run and sequences the stages.

    Sub-stages receive the page by reference and never create their own.
    Call :meth:`close` when done, typically in a ``finally`` block.
    """

    def __init__(self, cfg: Config, auth: AuthStrategy | None = None) -> None:
        self.cfg = cfg
        self.auth = auth
        self._play = sync_playwright().start()
        try:
            self._open(cfg)
        except Exception:
            self._play.stop()
            raise

    def _open(self, cfg: Config) -> None:
        state_path = _state_file(cfg)
        session_exists = bool(cfg.session.reuse and state_path.exists())

        headless_effective = cfg.headless
        if not session_exists and cfg.session.headed_on_first_run:
            # Headed so the user can complete a manual login
            headless_effective = False
            logger.info(
                "DocumentScraper: no saved session and headed_on_first_run=True, "
                "opening a visible browser",
            )

        launch_args = []
        if cfg.browser == "chromium":
            launch_args = (
                ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]
                if headless_effective
                else ["--start-maximized"]
            )
        browser_type = getattr(self._play, cfg.browser)
        self.browser = browser_type.launch(headless=headless_effective, args=launch_args)

        self.context, self._state_reused = load_context(self.browser, cfg)
        self.page: Page = self.context.new_page()
        self.page.set_default_navigation_timeout(cfg.navigation_timeout_ms)

    def close(self) -> None:
        """Shut down the browser context and stop the driver."""
        try:
            self.context.close()
            self.browser.close()
        finally:
            self._play.stop()

    def capture_screenshot(self, directory: Path | None = None) -> Path | None:
        """Save a full-page screenshot for diagnostics; returns None if it fails."""
        directory = Path(directory or self.cfg.output.directory)
        target = directory / f"error-{datetime.now():%Y%m%d-%H%M%S}.png"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            self.page.screenshot(path=str(target), full_page=True)
        except (PlaywrightError, OSError):
            logger.exception("Could not capture diagnostic screenshot")
            return None
        logger.info("Screenshot saved: %s", target)
        return target

    def _ensure_authenticated(self) -> None:
        """
        Leave the page authenticated and positioned on the document list.

        Steps:
        - navigate to the list URL;
        - if the page does not look logged in, invoke the configured
          :class:`AuthStrategy` (if any) and wait for the user to finish;
        - on success persist storage_state and return to the list URL.
        """
        navigate(self.page, self.cfg.base_url, self.cfg.navigation_timeout_ms)
        if is_logged_in(self.page, self.cfg):
            return

        if self.auth:
            self.auth.login(self.page, self.cfg, LocatorResolver())
        logger.info(
            "Waiting up to %ss for login to complete in the browser window",
            self.cfg.session.auth_timeout_s,
        )
        if not wait_until(
            lambda: is_logged_in(self.page, self.cfg),
            self.cfg.session.auth_timeout_s,
        ):
            msg = "Login was not completed before the timeout"
            raise ScrapeError(msg)

        save_context(self.context, self.cfg)
        navigate(self.page, self.cfg.base_url, self.cfg.navigation_timeout_ms)

    def run(self, limit: int | None = None) -> RunResult:
        """
        Execute one run and return its :class:`RunResult`.

        ``limit`` overrides ``cfg.max_items``; 0 means unbounded.
        """
        limit = self.cfg.max_items if limit is None else limit
        self._ensure_authenticated()
        logger.info("Waiting %sms for the document list to load", self.cfg.list_settle_ms)
        self.page.wait_for_timeout(self.cfg.list_settle_ms)

        temp_dir = Path(tempfile.mkdtemp(prefix="poscraper-"))
        resolver = LocatorResolver()
        paginator = PaginationController(
            self.page, resolver, self.cfg.pagination, self.cfg.rows.row,
        )
        coordinator = RowDownloadCoordinator(
            self.page,
            resolver,
            paginator,
            self.cfg.rows,
            temp_dir,
            max_pages=self.cfg.pagination.max_pages,
        )

        total = paginator.get_total_count()
        if total:
            planned = min(total, limit) if limit else total
            logger.info("Planning to download %s of %s document(s)", planned, total)

        return run_pipeline(
            coordinator,
            SchemaReconciler(self.cfg.reconcile),
            MergeWriter(self.cfg.output),
            limit,
            temp_dir,
        )


# ----------------------------
# CLI
# ----------------------------


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Download every document in a paginated list and merge them",
    )
    ap.add_argument("--cfg", type=str, required=True, help="Path to config JSON")
    ap.add_argument(
        "--max-items",
        type=int,
        default=None,
        help="Maximum number of documents to download (0 = all)",
    )
    ap.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run with or without a visible browser window",
    )
    ap.add_argument("--out", type=str, default="", help="Directory for the merged file")
    ap.add_argument("--usr", help="Session username (for session keying)")
    return ap


def main(argv: list[str] | None = None) -> None:
    """
    CLI entrypoint.

    Example:
    python -m poscraper.poscraper --cfg config.json --max-items 20 --no-headless

    """
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    cfg = load_config(args.cfg)
    if args.max_items is not None:
        cfg.max_items = args.max_items
    if args.headless is not None:
        cfg.headless = args.headless
    if args.out:
        cfg.output.directory = Path(args.out)
    if args.usr:
        cfg.session.user = args.usr

    logger.info(
        "List: %s | Output: %s | Max items: %s | Headless: %s",
        cfg.base_url,
        cfg.output.directory,
        cfg.max_items or "all",
        cfg.headless,
    )

    scraper = DocumentScraper(cfg)
    try:
        result = scraper.run()
    except Exception:
        scraper.capture_screenshot()
        raise
    finally:
        scraper.close()

    logger.info(
        "Rows: %s | Cols: %s | Documents: %s | Pages: %s | Row failures: %s | Skipped: %s",
        result.rows,
        result.columns,
        result.downloaded,
        result.pages,
        len(result.failures),
        len(result.skipped),
    )
    logger.info("Saved merged file to: %s", result.output)


if __name__ == "__main__":
    main()

"""
poscraper.pospaginate
=====================

Pagination detection and verified page transitions.

The target list is script rendered and its pagination controls are not
contractually stable, so every decision here fails closed: when detection is
inconclusive the controller reports "no next page", and a transition only
counts when the first data row visibly changed.
"""

from __future__ import annotations

import logging
import re

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .posconfig import PaginationConfig, SelectorSet
from .poslocate import LocatorResolver

logger = logging.getLogger(__name__)

DISABLED_JS = """el => !!(
    el.disabled ||
    el.classList.contains('disabled') ||
    el.getAttribute('aria-disabled') === 'true' ||
    (el.parentElement && el.parentElement.classList.contains('disabled')) ||
    el.style.opacity === '0.5' ||
    el.style.pointerEvents === 'none'
)"""

PAGES_PATTERN = re.compile(r"(\d+)\s+of\s+(\d+)\s+pages", re.IGNORECASE)
RANGE_PATTERN = re.compile(r"(\d+)\s*[-–]\s*(\d+)\s+of\s+(\d+)", re.IGNORECASE)
PAGE_OF_PATTERN = re.compile(r"Page\s+(\d+)\s+of\s+(\d+)", re.IGNORECASE)


def parse_total_count(text: str, patterns: list[str]) -> int:
    """Return the first total parsed by ``patterns`` from ``text``, or 0 when unknown."""
    for pat in patterns:
        m = re.search(pat, text or "", re.IGNORECASE)
        if not m:
            continue
        try:
            return int(m.group(1))
        except (IndexError, ValueError):
            continue
    return 0


def next_page_from_text(text: str) -> bool | None:
    """
    Decide from pagination text whether another page exists.

    Returns None when no known pattern is present so the caller can fall
    back to inspecting controls.
    """
    text = text or ""
    if m := PAGES_PATTERN.search(text):
        current, total = int(m.group(1)), int(m.group(2))
        logger.debug("pagination text: page %s of %s pages", current, total)
        return current < total
    if m := RANGE_PATTERN.search(text):
        end, total = int(m.group(2)), int(m.group(3))
        logger.debug("pagination text: showing up to %s of %s", end, total)
        return end < total
    if m := PAGE_OF_PATTERN.search(text):
        current, total = int(m.group(1)), int(m.group(2))
        logger.debug("pagination text: Page %s of %s", current, total)
        return current < total
    return None


class PaginationController:
    """
    Track and advance the document list's pagination.

    ``rows`` is the same row strategy list the download coordinator uses;
    the controller reads the first data row from it to fingerprint the page.
    """

    def __init__(
        self,
        page: Page,
        resolver: LocatorResolver,
        cfg: PaginationConfig,
        rows: SelectorSet,
    ) -> None:
        self.page = page
        self.resolver = resolver
        self.cfg = cfg
        self.rows = rows
        self.current_page = 1
        self.total_known_count = 0
        self._fingerprint_re = re.compile(cfg.fingerprint_pattern)
        self._transitions = {
            "exact_text": self._click_exact_text,
            "icon_hint": self._click_icon_hint,
            "proximity": self._click_near_page_count,
            "selectors": self._click_selectors,
        }

    def _page_text(self) -> str:
        try:
            return self.page.locator(self.cfg.text_scope).first.inner_text(timeout=5000)
        except (PlaywrightError, PlaywrightTimeoutError):
            logger.debug("PaginationController: could not read page text")
            return ""

    def get_total_count(self) -> int:
        total = parse_total_count(self._page_text(), self.cfg.total_count_patterns)
        if total:
            self.total_known_count = total
            logger.info("Total document count from pagination: %s", total)
        else:
            logger.info("Could not determine total document count")
        return total

    def has_next_page(self) -> bool:
        verdict = next_page_from_text(self._page_text())
        if verdict is not None:
            return verdict

        for match in self.resolver.iter_matches(self.page, self.cfg.next_button):
            if self._is_disabled(match.locator):
                logger.debug("Next control %r is disabled", match.candidate.selector)
                continue
            logger.debug("Found enabled next control %r", match.candidate.selector)
            return True
        logger.info("No pagination signal found; treating as last page")
        return False

    def _is_disabled(self, loc: Locator) -> bool:
        try:
            return bool(loc.evaluate(DISABLED_JS))
        except (PlaywrightError, PlaywrightTimeoutError):
            return True

    def fingerprint(self) -> str | None:
        """
        Return an identifier token from the first data row, or None.

        The header pseudo-row of strategies that declare a ``header_probe``
        is skipped.
        """
        for cand in self.rows.candidates:
            loc = self.resolver.locator(self.page, cand)
            try:
                count = loc.count()
                if not count:
                    continue
                index = 0
                if cand.header_probe and loc.first.locator(cand.header_probe).count():
                    index = 1
                if index >= count:
                    continue
                text = loc.nth(index).inner_text(timeout=2000)
            except (PlaywrightError, PlaywrightTimeoutError):
                continue
            m = self._fingerprint_re.search(text or "")
            if m:
                return m.group(0)
        return None

    def go_to_next_page(self) -> bool:
        before = self.fingerprint()
        if before is None:
            logger.warning(
                "No row fingerprint on page %s; cannot verify a transition",
                self.current_page,
            )
            return False

        if not self._trigger_next():
            logger.warning("Could not find or click a next-page control")
            return False

        for attempt in range(1, self.cfg.poll_attempts + 1):
            self.page.wait_for_timeout(self.cfg.poll_interval_ms)
            after = self.fingerprint()
            if after is not None and after != before:
                self.current_page += 1
                logger.info(
                    "Moved to page %s (%s -> %s) after %s poll(s)",
                    self.current_page,
                    before,
                    after,
                    attempt,
                )
                return True
        logger.warning(
            "Next-page click did not change the list (still %s); stopping", before,
        )
        return False

    def _trigger_next(self) -> bool:
        for name in self.cfg.transition_strategies:
            handler = self._transitions.get(name)
            if handler is None:
                logger.warning("Unknown transition strategy: %s", name)
                continue
            try:
                if handler():
                    logger.debug("Next page triggered via %s", name)
                    return True
            except (PlaywrightError, PlaywrightTimeoutError) as exc:
                logger.debug("Transition strategy %s failed: %s", name, exc)
        return False

    def _click_if_enabled(self, loc: Locator) -> bool:
        if self._is_disabled(loc):
            return False
        loc.click()
        return True

    def _click_exact_text(self) -> bool:
        labels = {label.strip() for label in self.cfg.next_labels}
        for btn in self.page.locator(self.cfg.control_selector).all():
            text = (btn.text_content() or "").strip()
            if text in labels and btn.is_visible() and self._click_if_enabled(btn):
                return True
        return False

    def _click_icon_hint(self) -> bool:
        hints = [h.lower() for h in self.cfg.icon_hints]
        excluded = [h.lower() for h in self.cfg.icon_exclude_hints]
        for btn in self.page.locator(self.cfg.control_selector).all():
            html = (btn.inner_html() or "").lower()
            if (
                any(h in html for h in hints)
                and not any(h in html for h in excluded)
                and btn.is_visible()
                and self._click_if_enabled(btn)
            ):
                return True
        return False

    def _click_near_page_count(self) -> bool:
        marker = self.page.get_by_text(
            re.compile(self.cfg.pages_text_pattern, re.IGNORECASE),
        ).first
        if not marker.is_visible():
            return False
        container = marker.locator(
            "xpath=ancestor::div[contains(@class, 'pagination') "
            "or contains(@class, 'pager') or .//button][1]",
        )
        buttons = container.locator(self.cfg.control_selector)
        if buttons.count() < 2:
            return False
        return self._click_if_enabled(buttons.last)

    def _click_selectors(self) -> bool:
        for match in self.resolver.iter_matches(self.page, self.cfg.next_button):
            if self._click_if_enabled(match.locator):
                return True
        return False

"""
poscraper.poslocate
===================

Ordered-fallback element resolution.

:class:`LocatorResolver` walks a caller-supplied :class:`SelectorSet` in
order and returns the first candidate that produces a match in the required
state. There is no implicit global strategy list: every call site passes the
strategies it wants tried, most specific first.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .posconfig import SelectorCandidate, SelectorSet

logger = logging.getLogger(__name__)

UNSTABLE_PATTERNS = [
    r":nth-(child|of-type)\(",  # brittle positional CSS
    r"//.*text\(\)\s*=",  # text-based XPath
    r"^/{1,2}(?!html)",  # absolute XPaths from root (allow 'html' root narrowly)
]


@dataclass
class Match:
    """A resolved element and the candidate that found it."""

    locator: Locator
    candidate: SelectorCandidate


class LocatorResolver:
    """
    Resolve selector candidates into Playwright locators.

    Each candidate is waited on with its own ``timeout_ms`` when set, or an
    equal share of the caller's ``budget_ms`` otherwise (never less than
    ``min_attempt_ms``). Failures are reported as ``None``, not raised;
    callers decide whether a miss is fatal.
    """

    def __init__(self, default_budget_ms: int = 5000, min_attempt_ms: int = 250) -> None:
        self.default_budget_ms = default_budget_ms
        self.min_attempt_ms = min_attempt_ms

    def _validate(self, cand: SelectorCandidate) -> None:
        if cand.allow_unstable or cand.engine == "text":
            return
        for pat in UNSTABLE_PATTERNS:
            if re.search(pat, cand.selector):
                msg = f"Rejected unstable selector: {cand.selector}"
                raise ValueError(msg)

    def locator(self, scope: Locator | Page, cand: SelectorCandidate) -> Locator:
        """Return the raw (possibly multi-match) locator for ``cand`` in ``scope``."""
        if cand.engine == "xpath":
            return scope.locator(f"xpath={cand.selector}")
        if cand.engine == "text":
            return scope.get_by_text(cand.selector, exact=True)
        return scope.locator(cand.selector)

    def attempt_timeout(
        self, cand: SelectorCandidate, n_candidates: int, budget_ms: int | None,
    ) -> int:
        if cand.timeout_ms is not None:
            return cand.timeout_ms
        budget = self.default_budget_ms if budget_ms is None else budget_ms
        return max(self.min_attempt_ms, budget // max(1, n_candidates))

    def iter_matches(
        self,
        scope: Locator | Page,
        selset: SelectorSet,
        budget_ms: int | None = None,
    ) -> Iterator[Match]:
        """
        Yield a :class:`Match` for every candidate that resolves, in order.

        Useful when the first visible element may still be unusable (for
        example a disabled pagination control) and the caller wants to keep
        going down the list.
        """
        n = len(selset.candidates)
        for cand in selset.candidates:
            try:
                self._validate(cand)
            except ValueError as exc:
                logger.debug("LocatorResolver: %s", exc)
                continue
            loc = self.locator(scope, cand).first
            try:
                loc.wait_for(
                    state=cand.state,
                    timeout=self.attempt_timeout(cand, n, budget_ms),
                )
            except (PlaywrightError, PlaywrightTimeoutError):
                logger.debug("LocatorResolver: no match for %r", cand.selector)
                continue
            yield Match(loc, cand)

    def resolve(
        self,
        scope: Locator | Page,
        selset: SelectorSet,
        budget_ms: int | None = None,
    ) -> Match | None:
        """Return the first matching candidate, or None when all are exhausted."""
        return next(self.iter_matches(scope, selset, budget_ms), None)

    def text_scan(self, scope: Locator | Page, label: str) -> Locator | None:
        """
        Scan every descendant of ``scope`` for an exact, case-insensitive text match.

        This is the last-resort strategy after structured candidates fail. The
        first element in document order whose trimmed text equals ``label``
        is returned.
        """
        wanted = label.strip().lower()
        try:
            elements = scope.locator("*").all()
        except (PlaywrightError, PlaywrightTimeoutError):
            return None
        for el in elements:
            try:
                text = el.text_content() or ""
            except (PlaywrightError, PlaywrightTimeoutError):
                continue
            if text.strip().lower() == wanted:
                return el
        return None

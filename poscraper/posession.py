"""
poscraper.posession.

Utilities for persisting and restoring Playwright ``storage_state`` files,
navigating with a load-state fallback and detecting whether the browser is
sitting on an authenticated application view.

Helpers
-------
- _state_file(cfg): return the expected storage_state Path for a given
    :class:`poscraper.posconfig.Config`.
- load_context(browser, cfg): create a download-enabled browser context,
    reusing a saved storage_state if present.
- save_context(ctx, cfg): persist a BrowserContext's storage_state to
    disk (atomic via temporary file + replace).
- is_login_page(url, cfg): heuristic to detect the application's sign-in URL.
- is_logged_in(page, cfg): quick guard to detect logged-in state using
    either a configured guard selector or the URL heuristic.
- wait_until(pred, timeout_s): simple polling helper used by login waits.
- navigate(page, url, timeout_ms): goto with ``load`` and a
    ``domcontentloaded`` fallback on timeout.
"""

import contextlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from playwright.sync_api import Browser, BrowserContext, Page
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .posconfig import Config

logger = logging.getLogger(__name__)


def _state_file(cfg: Config) -> Path:
    """
    Return the path where storage_state for ``cfg`` should be stored.

    If ``cfg.session.path`` is provided it is returned verbatim. Otherwise
    the file ``{user or 'default'}.json`` under
    ``~/.poscraper/sessions/{site_host}/`` is used.
    """
    if cfg.session.path:
        return Path(cfg.session.path)
    base = Path.home() / ".poscraper" / "sessions"
    f = f"{cfg.session.user or 'default'}.json"
    return base / cfg.session.site_host / f


def load_context(browser: Browser, cfg: Config) -> tuple[BrowserContext, bool]:
    """
    Open a download-enabled browser context, reusing saved storage state.

    Returns ``(context, reused_flag)``. Corrupt or unreadable state files are
    renamed with the ``.bad`` suffix and a fresh context is returned.
    """
    spath = _state_file(cfg)
    if cfg.session.reuse and spath.exists():
        try:
            return (
                browser.new_context(accept_downloads=True, storage_state=str(spath)),
                True,
            )
        except (PlaywrightError, OSError):
            with contextlib.suppress(OSError):
                spath.rename(spath.with_suffix(".bad"))
            logger.exception("Failed to load storage_state, starting fresh context")
    return browser.new_context(accept_downloads=True), False


def save_context(ctx: BrowserContext, cfg: Config) -> None:
    """
    Persist the BrowserContext storage_state to disk atomically.

    No-op when ``cfg.session.save_on_success`` is False.
    """
    if not cfg.session.save_on_success:
        return
    spath = _state_file(cfg)
    spath.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=spath.parent)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(ctx.storage_state(), f)
    except (OSError, TypeError):
        with contextlib.suppress(OSError):
            os.close(tmp_fd)
        raise
    Path(tmp_path).replace(spath)


def is_login_page(url: str, cfg: Config) -> bool:
    marker = cfg.session.login_url_marker
    return bool(marker) and marker in (url or "")


def is_logged_in(page: Page, cfg: Config) -> bool:
    """
    Best-effort check that a Page represents an authenticated view.

    A configured ``logged_in_guard`` selector wins. Otherwise the current URL
    must not be the sign-in page and must contain the configured site host.
    """
    guard = cfg.selectors.get("logged_in_guard")
    if guard:
        try:
            return page.locator(guard).first.is_visible(timeout=1000)
        except PlaywrightError:
            return False
    return (not is_login_page(page.url, cfg)) and cfg.session.site_host in (
        page.url or ""
    )


def wait_until(pred: Callable[[], bool], timeout_s: int, poll_ms: int = 250) -> bool:
    """
    Poll ``pred`` until it returns True or ``timeout_s`` elapses.

    Exceptions raised by ``pred`` are logged at debug level and treated as
    a False result.
    """
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        try:
            if pred():
                return True
        except Exception as exc:  # noqa: BLE001 - predicates touch a live page and may raise transient errors
            logger.debug("wait_until: predicate raised an exception: %s", exc)
        time.sleep(poll_ms / 1000)
    return False


def navigate(page: Page, url: str, timeout_ms: int = 60000) -> None:
    """
    Navigate to ``url`` waiting for ``load``; fall back to ``domcontentloaded``.

    Pages with continuous background traffic may never reach ``load``; a
    second timeout is propagated to the caller.
    """
    logger.info("Navigating to %s", url)
    try:
        page.goto(url, wait_until="load", timeout=timeout_ms)
    except PlaywrightTimeoutError:
        logger.warning("Load timeout, retrying with domcontentloaded")
        page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

import json
from pathlib import Path
from unittest.mock import Mock

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from poscraper.posconfig import Config
from poscraper.posession import (
    _state_file,
    is_logged_in,
    is_login_page,
    load_context,
    navigate,
    save_context,
    wait_until,
)


def _cfg(tmp_path: Path | None = None) -> Config:
    cfg = Config()
    cfg.session.site_host = "vendorhub.example.com"
    cfg.session.login_url_marker = "/welcome/login"
    if tmp_path is not None:
        cfg.session.path = tmp_path / "state.json"
    return cfg


def test_state_file_defaults_to_user_under_site_host() -> None:
    cfg = _cfg()
    cfg.session.user = "buyer"
    path = _state_file(cfg)
    assert path.parts[-4:] == (".poscraper", "sessions", "vendorhub.example.com", "buyer.json")


def test_state_file_explicit_path(tmp_path: Path) -> None:
    assert _state_file(_cfg(tmp_path)) == tmp_path / "state.json"


def test_login_detection_by_url() -> None:
    cfg = _cfg()
    page = Mock()
    page.url = "https://vendorhub.example.com/welcome/login?next=/po"
    assert is_login_page(page.url, cfg)
    assert not is_logged_in(page, cfg)

    page.url = "https://vendorhub.example.com/purchase-orders"
    assert not is_login_page(page.url, cfg)
    assert is_logged_in(page, cfg)

    page.url = "https://sso.example.net/authorize"
    assert not is_logged_in(page, cfg)


def test_login_guard_selector_wins() -> None:
    cfg = _cfg()
    cfg.selectors["logged_in_guard"] = "#account-menu"
    page = Mock()
    page.url = "https://vendorhub.example.com/welcome/login"
    page.locator.return_value.first.is_visible.return_value = True

    assert is_logged_in(page, cfg)
    page.locator.assert_called_with("#account-menu")


def test_wait_until_polls_until_true() -> None:
    results = iter([False, RuntimeError("page navigating"), True])

    def pred():
        value = next(results)
        if isinstance(value, Exception):
            raise value
        return value

    assert wait_until(pred, timeout_s=2, poll_ms=1)
    assert not wait_until(lambda: False, timeout_s=0)


def test_navigate_falls_back_to_domcontentloaded() -> None:
    page = Mock()
    page.goto.side_effect = [PlaywrightTimeoutError("Timeout"), None]

    navigate(page, "https://vendorhub.example.com/po", timeout_ms=1000)

    assert [c.kwargs["wait_until"] for c in page.goto.call_args_list] == [
        "load",
        "domcontentloaded",
    ]


def test_load_context_reuses_saved_state(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    cfg.session.path.write_text("{}", encoding="utf-8")
    browser = Mock()

    ctx, reused = load_context(browser, cfg)

    assert reused is True
    browser.new_context.assert_called_once_with(
        accept_downloads=True, storage_state=str(cfg.session.path),
    )
    assert ctx is browser.new_context.return_value


def test_load_context_quarantines_corrupt_state(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    cfg.session.path.write_text("not json", encoding="utf-8")
    fresh = Mock()
    browser = Mock()
    browser.new_context.side_effect = [PlaywrightError("bad state"), fresh]

    ctx, reused = load_context(browser, cfg)

    assert (ctx, reused) == (fresh, False)
    assert (tmp_path / "state.bad").exists()
    browser.new_context.assert_called_with(accept_downloads=True)


def test_save_context_writes_storage_state(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    ctx = Mock()
    ctx.storage_state.return_value = {"cookies": [{"name": "sid"}], "origins": []}

    save_context(ctx, cfg)

    assert json.loads(cfg.session.path.read_text(encoding="utf-8"))["cookies"][0]["name"] == "sid"


def test_save_context_respects_save_on_success(tmp_path: Path) -> None:
    cfg = _cfg(tmp_path)
    cfg.session.save_on_success = False
    save_context(Mock(), cfg)
    assert not cfg.session.path.exists()

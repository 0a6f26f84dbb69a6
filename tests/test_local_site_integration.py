import os
import threading
from functools import partial
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pandas as pd
import pytest

from poscraper.posconfig import Config
from poscraper.poscraper import DocumentScraper

SITE = Path(__file__).resolve().parent / "site"


def serve(dirpath: Path):
    handler = partial(SimpleHTTPRequestHandler, directory=str(dirpath))
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return httpd, thread


def _cfg(base_url: str, out_dir: Path) -> Config:
    cfg = Config(base_url=base_url, headless=True, list_settle_ms=200)
    cfg.session.reuse = False
    cfg.session.save_on_success = False
    cfg.session.headed_on_first_run = False
    cfg.session.site_host = "127.0.0.1"
    cfg.rows.pause_ms = 50
    cfg.rows.retry_delay_ms = 200
    cfg.rows.download_timeout_ms = 5000
    cfg.pagination.poll_interval_ms = 200
    cfg.output.directory = out_dir
    cfg.output.extension = ".csv"
    return cfg


def _run(cfg: Config, limit: int):
    scraper = DocumentScraper(cfg)
    try:
        return scraper.run(limit)
    finally:
        scraper.close()


@pytest.fixture
def site_url():
    if os.environ.get("RUN_PLAYWRIGHT_INTEGRATION", "0") != "1":
        pytest.skip("Set RUN_PLAYWRIGHT_INTEGRATION=1 to run Playwright integrations")
    srv, thread = serve(SITE)
    try:
        yield f"http://127.0.0.1:{srv.server_address[1]}/index.html"
    finally:
        srv.shutdown()
        thread.join(timeout=2)


@pytest.mark.integration
def test_downloads_every_page_and_merges(site_url, tmp_path: Path) -> None:
    result = _run(_cfg(site_url, tmp_path), limit=0)

    assert result.downloaded == 12
    assert result.pages == 3
    assert result.stop_reason == "last_page"
    assert result.failures == []
    assert result.cleanup.removed

    frame = pd.read_csv(result.output, dtype=str, keep_default_na=False)
    assert len(frame) == 24
    assert list(frame.columns[-4:]) == ["S. no.", "SKU", "Qty", "Tax"]
    second = frame[frame["identifier"] == "FKPO0002"]
    assert second["Qty"].tolist() == ["2", "2"]
    assert second["Tax"].tolist() == ["18%", "18%"]
    first = frame[frame["identifier"] == "FKPO0001"]
    assert first["Tax"].tolist() == ["", ""]


@pytest.mark.integration
def test_limit_stops_mid_page(site_url, tmp_path: Path) -> None:
    result = _run(_cfg(site_url, tmp_path), limit=7)

    assert result.downloaded == 7
    assert result.pages == 2
    assert result.stop_reason == "limit"
    assert result.rows == 14

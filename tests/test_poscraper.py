import json
from pathlib import Path
from unittest.mock import Mock, patch

import pandas as pd
import pytest
from playwright.sync_api import Error as PlaywrightError

from conftest import po_grid, write_csv
from poscraper.posconfig import Config, OutputConfig
from poscraper.posdownload import DownloadReport, RawDocument, RowFailure
from poscraper.poscraper import (
    DocumentScraper,
    NoDataRowsError,
    NoDocumentsError,
    ScrapeError,
    cleanup_temp,
    main,
    run_pipeline,
)
from poscraper.posmerge import MergeWriter
from poscraper.posreconcile import SchemaReconciler


def _coordinator(report: DownloadReport) -> Mock:
    coordinator = Mock()
    coordinator.download_all_across_pages.return_value = report
    return coordinator


def test_pipeline_merges_and_removes_temp_dir(tmp_path: Path) -> None:
    temp_dir = tmp_path / "poscraper-run"
    temp_dir.mkdir()
    a = write_csv(
        temp_dir / "0001_a.csv",
        po_grid("FKPO0001", ["S. no.", "SKU", "Qty"], [["1", "A1", "2"], ["2", "A2", "1"]]),
    )
    b = write_csv(
        temp_dir / "0003_b.csv",
        po_grid("FKPO0003", ["S. no.", "Qty", "SKU", "HSN"], [["1", "7", "B1", "6109"]]),
    )
    report = DownloadReport(
        documents=[RawDocument(a, 1), RawDocument(b, 3)],
        failures=[RowFailure(2, 1, 2, "download trigger not found")],
        pages=1,
        stop_reason="last_page",
    )
    out_dir = tmp_path / "out"

    result = run_pipeline(
        _coordinator(report),
        SchemaReconciler(),
        MergeWriter(OutputConfig(directory=out_dir, extension=".csv")),
        0,
        temp_dir,
    )

    assert result.rows == 3
    assert result.downloaded == 2
    assert len(result.failures) == 1
    assert result.cleanup.removed
    assert not temp_dir.exists()
    frame = pd.read_csv(result.output, dtype=str, keep_default_na=False)
    assert frame.columns[-1] == "HSN"
    assert frame["SKU"].tolist() == ["A1", "A2", "B1"]
    assert frame["Qty"].tolist() == ["2", "1", "7"]
    assert frame["identifier"].tolist() == ["FKPO0001", "FKPO0001", "FKPO0003"]


def test_pipeline_without_downloads_writes_nothing(tmp_path: Path) -> None:
    writer = Mock()
    report = DownloadReport(failures=[RowFailure(1, 1, 1, "timeout")], pages=1)

    with pytest.raises(NoDocumentsError):
        run_pipeline(_coordinator(report), SchemaReconciler(), writer, 0, tmp_path)

    writer.write.assert_not_called()
    assert tmp_path.exists()


def test_pipeline_without_data_rows_keeps_temp_files(tmp_path: Path) -> None:
    doc = write_csv(tmp_path / "0001_a.csv", po_grid("FKPO0001", ["S. no.", "SKU"], []))
    writer = Mock()
    report = DownloadReport(documents=[RawDocument(doc, 1)], pages=1)

    with pytest.raises(NoDataRowsError):
        run_pipeline(_coordinator(report), SchemaReconciler(), writer, 0, tmp_path)

    writer.write.assert_not_called()
    assert doc.exists()


def test_cleanup_failure_is_reported_not_raised(tmp_path: Path) -> None:
    with patch("poscraper.poscraper.shutil.rmtree", side_effect=PermissionError("busy")):
        outcome = cleanup_temp(tmp_path)
    assert outcome.removed is False
    assert "busy" in outcome.reason


def _bare_scraper(cfg: Config) -> DocumentScraper:
    scraper = DocumentScraper.__new__(DocumentScraper)
    scraper.cfg = cfg
    scraper.auth = None
    scraper.page = Mock()
    scraper.context = Mock()
    return scraper


def test_authenticated_session_goes_straight_to_list() -> None:
    scraper = _bare_scraper(Config(base_url="https://vendorhub.example.com/po"))
    with (
        patch("poscraper.poscraper.navigate") as nav,
        patch("poscraper.poscraper.is_logged_in", return_value=True),
        patch("poscraper.poscraper.save_context") as save,
    ):
        scraper._ensure_authenticated()
    nav.assert_called_once()
    save.assert_not_called()


def test_manual_login_is_awaited_then_saved() -> None:
    scraper = _bare_scraper(Config(base_url="https://vendorhub.example.com/po"))
    scraper.auth = Mock()
    with (
        patch("poscraper.poscraper.navigate") as nav,
        patch("poscraper.poscraper.is_logged_in", return_value=False),
        patch("poscraper.poscraper.wait_until", return_value=True),
        patch("poscraper.poscraper.save_context") as save,
    ):
        scraper._ensure_authenticated()
    scraper.auth.login.assert_called_once()
    save.assert_called_once_with(scraper.context, scraper.cfg)
    assert nav.call_count == 2


def test_login_timeout_is_fatal() -> None:
    scraper = _bare_scraper(Config(base_url="https://vendorhub.example.com/po"))
    with (
        patch("poscraper.poscraper.navigate"),
        patch("poscraper.poscraper.is_logged_in", return_value=False),
        patch("poscraper.poscraper.wait_until", return_value=False),
        patch("poscraper.poscraper.save_context") as save,
        pytest.raises(ScrapeError),
    ):
        scraper._ensure_authenticated()
    save.assert_not_called()


def _write_cfg(tmp_path: Path) -> Path:
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({"base_url": "https://vendorhub.example.com/po"}))
    return path


def test_main_applies_cli_overrides(tmp_path: Path) -> None:
    result = Mock(rows=3, columns=9, downloaded=2, pages=1, failures=[], skipped=[])
    with patch("poscraper.poscraper.DocumentScraper") as scraper_cls:
        scraper_cls.return_value.run.return_value = result
        main(
            [
                "--cfg",
                str(_write_cfg(tmp_path)),
                "--max-items",
                "5",
                "--no-headless",
                "--out",
                str(tmp_path / "merged"),
                "--usr",
                "buyer",
            ],
        )

    cfg = scraper_cls.call_args.args[0]
    assert cfg.max_items == 5
    assert cfg.headless is False
    assert cfg.output.directory == tmp_path / "merged"
    assert cfg.session.user == "buyer"
    scraper_cls.return_value.close.assert_called_once()


def test_main_captures_screenshot_on_fatal_error(tmp_path: Path) -> None:
    with patch("poscraper.poscraper.DocumentScraper") as scraper_cls:
        scraper_cls.return_value.run.side_effect = NoDocumentsError("nothing")
        with pytest.raises(NoDocumentsError):
            main(["--cfg", str(_write_cfg(tmp_path))])

    scraper_cls.return_value.capture_screenshot.assert_called_once()
    scraper_cls.return_value.close.assert_called_once()


def test_driver_is_stopped_when_browser_setup_fails() -> None:
    cfg = Config(base_url="https://vendorhub.example.com/po")
    cfg.session.reuse = False
    with patch("poscraper.poscraper.sync_playwright") as sync_pw:
        play = sync_pw.return_value.start.return_value
        play.chromium.launch.side_effect = PlaywrightError("Executable doesn't exist")
        with pytest.raises(PlaywrightError):
            DocumentScraper(cfg)
    play.stop.assert_called_once()

import argparse
import json
import logging
import pathlib
import re
from datetime import UTC, datetime
from typing import Annotated, Any
from urllib.parse import urlparse

import pandas as pd
import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query
from pydantic import BaseModel

from poscraper import Config, DocumentScraper, ScrapeError, coerce_nested

from .poslog import attach_broker_handler, broker
from .poswsr import router as ws_router

DATA_DIR = pathlib.Path("./.data")
DATA_DIR.mkdir(exist_ok=True)
RUN_ID_RE = re.compile(r"^[A-Za-z0-9-]+$")
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)
attach_broker_handler(broker)


class RunCreated(BaseModel):
    run_id: str
    output: str
    rows: int


server = FastAPI(title="poscraper")
server.include_router(ws_router)


def _label(value: str, default: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "-", value or "").strip("-") or default


def make_run_id(cfg: Config, now: datetime | None = None) -> str:
    """Return ``{date}-{time}-{host}-{user}``; a ``-n`` suffix avoids reusing a directory."""
    now = now or datetime.now(tz=UTC)
    try:
        host = urlparse(cfg.base_url).hostname or "site"
    except (AttributeError, ValueError, TypeError):
        host = "site"
    run_id = (
        f"{now:%Y-%m-%d}-{now:%H%M%S}-{_label(host, 'site')}-"
        f"{_label(cfg.session.user, 'anon')}"
    )
    candidate, n = run_id, 1
    while (DATA_DIR / candidate).exists():
        candidate = f"{run_id}-{n}"
        n += 1
    return candidate


def _run_dir(run_id: str) -> pathlib.Path:
    run_dir = DATA_DIR / run_id
    if not RUN_ID_RE.match(run_id) or not run_dir.exists():
        raise HTTPException(404, "Run not found")
    return run_dir


def _read_meta(run_dir: pathlib.Path) -> dict[str, Any]:
    try:
        with (run_dir / "meta.json").open(encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        logger.exception("Failed to read meta.json in %s", run_dir)
        raise HTTPException(500, "Failed to read run metadata") from None


@server.post("/runs", response_model=RunCreated)
def create_run(
    body: Annotated[
        dict[str, Any],
        Body(description="Either {'config': {...}} or the config object itself"),
    ] = ...,
    max_items: Annotated[
        int | None, Query(ge=0, description="Override cfg.max_items (0 = all)"),
    ] = None,
):
    raw_config: dict[str, Any] = body.get("config", body)
    cfg = coerce_nested(raw_config, Config)

    # API runs cannot wait for a manual login in a visible window; they rely
    # on a session saved by an earlier CLI run.
    cfg.headless = True
    cfg.session.headed_on_first_run = False

    run_id = make_run_id(cfg)
    run_dir = DATA_DIR / run_id
    try:
        run_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.exception("Failed to create run directory %s", run_dir)
        raise HTTPException(500, "Failed to create run directory") from None
    cfg.output.directory = run_dir

    logger.info("Run %s: starting (max_items=%s)", run_id, max_items)
    scraper = DocumentScraper(cfg)
    try:
        result = scraper.run(max_items)
    except ScrapeError as exc:
        logger.warning("Run %s failed: %s", run_id, exc)
        raise HTTPException(422, str(exc)) from None
    finally:
        scraper.close()

    meta = {
        "run_id": run_id,
        "output": result.output.name,
        "rows": result.rows,
        "cols": result.columns,
        "documents": result.downloaded,
        "pages": result.pages,
        "stop_reason": result.stop_reason,
        "row_failures": [
            {"index": f.global_index, "page": f.page, "row": f.row, "reason": f.reason}
            for f in result.failures
        ],
        "skipped": [
            {"file": s.path.name, "reason": s.reason} for s in result.skipped
        ],
        "temp_removed": result.cleanup.removed,
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }
    try:
        with (run_dir / "meta.json").open("w", encoding="utf-8") as f:
            json.dump(meta, f)
    except OSError:
        logger.exception("Failed to write meta.json in %s", run_dir)
        raise HTTPException(500, "Failed to persist metadata") from None

    return RunCreated(run_id=run_id, output=result.output.name, rows=result.rows)


@server.get("/runs/{run_id}")
def get_run(run_id: str):
    return _read_meta(_run_dir(run_id))


@server.get("/runs/{run_id}/rows")
def get_rows(run_id: str):
    run_dir = _run_dir(run_id)
    meta = _read_meta(run_dir)
    out = run_dir / meta["output"]
    try:
        if out.suffix.lower() == ".csv":
            dframe = pd.read_csv(out, dtype=object)
        else:
            dframe = pd.read_excel(out, dtype=object)
    except (OSError, ValueError):
        logger.exception("Failed to read merged output for %s", run_id)
        raise HTTPException(500, "Failed to read results") from None
    items = json.loads(dframe.to_json(orient="records", date_format="iso"))
    return {"meta": meta, "columns": list(dframe.columns), "items": items}


def serve(argv: list[str] | None = None) -> None:
    """Run the API under uvicorn."""
    ap = argparse.ArgumentParser(description="poscraper run API")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=8000)
    args = ap.parse_args(argv)
    uvicorn.run(server, host=args.host, port=args.port)


if __name__ == "__main__":
    serve()

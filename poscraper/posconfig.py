"""
poscraper.posconfig
===================

Configuration dataclasses and helpers used to coerce a JSON configuration
into Python objects consumed by the scraper runtime.

The primary public surface is :class:`Config`, which mirrors the JSON
structure users author. Every selector list, pattern and bound carries a
default that matches the vendor portal the scraper was written against, so
a config only has to override what differs. :func:`load_config` reads a
JSON file and returns a typed :class:`Config` instance.
"""

import json
import types
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Literal, Union, get_args, get_origin


@dataclass
class SelectorCandidate:
    """
    An individual locating strategy.

    A candidate is one of the ordered fallbacks attempted when resolving an
    element. Callers order candidates from most to least specific.

    Fields
    ------
    selector: CSS, XPath or literal text depending on ``engine``.
    engine: ``css`` (Playwright CSS, including ``:has-text``), ``xpath`` or
        ``text`` (exact visible text).
    state: DOM state required before the candidate counts as a match.
    timeout_ms: fixed per-attempt timeout. When None the resolver gives the
        candidate an equal share of the caller's budget.
    allow_unstable: accept selectors matching :data:`UNSTABLE_PATTERNS`.
    header_probe: row strategies only. A selector that, when present inside
        the first matched row, marks that row as a header pseudo-row.
    """

    selector: str
    engine: Literal["css", "xpath", "text"] = "css"
    state: Literal["attached", "visible", "hidden"] = "visible"
    timeout_ms: int | None = None
    allow_unstable: bool = False
    header_probe: str | None = None


@dataclass
class SelectorSet:
    """An ordered list of :class:`SelectorCandidate`."""

    candidates: list[SelectorCandidate]


def _selector_set(*selectors: str, **overrides: Any) -> SelectorSet:
    return SelectorSet([SelectorCandidate(s, **overrides) for s in selectors])


def _default_rows() -> SelectorSet:
    return SelectorSet(
        [
            SelectorCandidate(
                'div[role="row"]',
                state="attached",
                header_probe='[role="columnheader"]',
            ),
            SelectorCandidate("table tbody tr", state="attached"),
            SelectorCandidate('[class*="table"] [class*="row"]', state="attached"),
        ],
    )


def _default_download_triggers() -> SelectorSet:
    return _selector_set(
        'button:has-text("Download")',
        'a:has-text("Download")',
        '[role="button"]:has-text("Download")',
        "text=Download",
        'span:has-text("Download")',
        'div:has-text("Download")',
        'button[title*="download" i]',
        'a[title*="download" i]',
        '[class*="download" i]',
        timeout_ms=500,
    )


def _default_next_controls() -> SelectorSet:
    return _selector_set(
        'button:has-text("Next")',
        '[aria-label="Next page"]',
        '[aria-label="next page"]',
        '[aria-label="Go to next page"]',
        '[class*="pagination"] [class*="next"]:not([disabled])',
        'button[class*="next"]:not([disabled])',
        '[class*="page-next"]:not([disabled])',
        'a:has-text("Next")',
        "li.next:not(.disabled) a",
        '[class*="pagination"] button:has-text(">")',
        'button:has-text(">")',
        'button:has-text(">>")',
        'button:has-text("→")',
        '[class*="chevron-right"]',
        '[class*="arrow-right"]',
        '[data-testid*="next"]',
        '[data-testid*="pagination"] button:last-child',
        timeout_ms=500,
    )


@dataclass
class RowsConfig:
    """
    Row discovery and per-row download settings.

    ``row`` lists the structural strategies for the row collection;
    ``trigger`` the strategies for the download control inside a row, with
    ``trigger_text`` used for the final full-subtree text scan.
    """

    row: SelectorSet = field(default_factory=_default_rows)
    min_rows: int = 0
    retries: int = 5
    retry_delay_ms: int = 5000
    trigger: SelectorSet = field(default_factory=_default_download_triggers)
    trigger_text: str = "Download"
    trigger_budget_ms: int = 4500
    download_timeout_ms: int = 30000
    pause_ms: int = 1500
    filename_prefix: str = "document"
    default_extension: str = ".xls"


@dataclass
class PaginationConfig:
    """
    Pagination detection and transition settings.

    ``transition_strategies`` is the ordered list of ways to trigger the
    next-page control; see :class:`poscraper.pospaginate.PaginationController`.
    """

    text_scope: str = "body"
    total_count_patterns: list[str] = field(
        default_factory=lambda: [
            r"Showing\s+\d+\s*[-–]\s*\d+\s+of\s+(\d+)",
            r"\d+\s*[-–]\s*\d+\s+of\s+(\d+)",
            r"\bof\s+(\d+)\s+(?:items|results|records|orders|entries)\b",
            r"\bof\s+(\d+)\b(?!\s+pages)",
        ],
    )
    next_button: SelectorSet = field(default_factory=_default_next_controls)
    transition_strategies: list[
        Literal["exact_text", "icon_hint", "proximity", "selectors"]
    ] = field(
        default_factory=lambda: ["exact_text", "icon_hint", "proximity", "selectors"],
    )
    control_selector: str = "button"
    next_labels: list[str] = field(
        default_factory=lambda: [">", "›", "»", "→", "Next"],
    )
    icon_hints: list[str] = field(
        default_factory=lambda: ["chevron", "arrow", "right", "next"],
    )
    icon_exclude_hints: list[str] = field(
        default_factory=lambda: ["left", "prev", "back"],
    )
    pages_text_pattern: str = r"of\s+\d+\s+pages"
    fingerprint_pattern: str = (
        r"\b(?=[A-Za-z0-9]*\d)(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{6,}\b"
    )
    poll_interval_ms: int = 1000
    poll_attempts: int = 10
    max_pages: int = 0


@dataclass
class MetadataField:
    """One metadata column: output ``header``, source ``label`` and anchor ``row``."""

    header: str
    label: str
    row: int


def _default_metadata() -> list[MetadataField]:
    return [
        MetadataField("identifier", "PO#", 1),
        MetadataField("category", "CATEGORY", 1),
        MetadataField("orderDate", "ORDER DATE", 1),
        MetadataField("expiry", "PO Expiry", 1),
        MetadataField("counterpartyName", "SUPPLIER NAME", 2),
        MetadataField("paymentTerm", "CREDIT TERM", 6),
    ]


@dataclass
class ReconcileConfig:
    """Document layout assumptions used by the schema reconciler."""

    metadata: list[MetadataField] = field(default_factory=_default_metadata)
    header_sentinels: list[str] = field(
        default_factory=lambda: ["S. no.", "S.no.", "Sno", "S No"],
    )
    terminal_markers: list[str] = field(
        default_factory=lambda: ["Total", "Important"],
    )
    sheet: int | str = 0


@dataclass
class OutputConfig:
    directory: Path = Path("./downloads")
    prefix: str = "merged_documents"
    extension: Literal[".xlsx", ".csv"] = ".xlsx"
    sheet_name: str = "Merged"


@dataclass
class SessionConfig:
    """
    Session and storage_state configuration.

    ``path`` may override the default storage state location. The login
    itself is an external concern; ``login_url_marker`` only lets the runtime
    recognise that it is still parked on the sign-in page.
    """

    path: Path | None = None
    user: str = ""
    site_host: str = ""
    reuse: bool = True
    save_on_success: bool = True
    auth_timeout_s: int = 300
    headed_on_first_run: bool = True
    login_url_marker: str = "/login"


@dataclass
class Config:
    """
    Top-level runtime configuration.

    ``base_url`` is the document list page. ``max_items`` caps the number of
    downloads (0 means unbounded).
    """

    browser: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    base_url: str = ""
    navigation_timeout_ms: int = 60000
    list_settle_ms: int = 8000
    max_items: int = 0

    session: SessionConfig = field(default_factory=SessionConfig)
    selectors: dict = field(default_factory=dict)

    rows: RowsConfig = field(default_factory=RowsConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def _unwrap_optional(t: Any) -> Any:
    """
    Return the inner type if ``t`` is Optional[...] else ``t``.

    Handles both ``typing.Optional`` and PEP 604 ``X | None`` annotations.
    """
    if get_origin(t) in (Union, types.UnionType):
        non_none = [a for a in get_args(t) if a is not type(None)]
        if len(non_none) == 1:
            return non_none[0]
    return t


def coerce_value(val: Any, target_type: type[Any]) -> Any:
    inner_type = _unwrap_optional(target_type)

    if val is None:
        return val

    if is_dataclass(inner_type) and isinstance(val, dict):
        return coerce_nested(val, inner_type)

    if inner_type is Path and isinstance(val, str):
        return Path(val)

    origin = get_origin(inner_type)
    args = get_args(inner_type)

    # List[...] of dataclasses
    if origin in (list, tuple) and args:
        inner_arg = args[0]
        return type(val)(coerce_value(v, inner_arg) for v in val)

    # Dict[..., SomeDataclass]
    if origin is dict and len(args) == 2:
        key_type, value_type = args
        return {
            coerce_value(k, key_type): coerce_value(v, value_type)
            for k, v in val.items()
        }

    return val


def coerce_nested(obj: dict, cls: type[Any]) -> Any:
    if not is_dataclass(cls):
        return obj

    kwargs = {}
    for f in fields(cls):
        if f.name not in obj:
            continue
        val = obj[f.name]
        if val is MISSING:
            continue
        kwargs[f.name] = coerce_value(val, f.type)

    return cls(**kwargs)


def load_config(path: str | Path) -> Config:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return coerce_nested(raw, Config)

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from ..errors import ExtractionError, snippet
from .fields import clean_text, selected_option
from .selectors import SELECTORS


_CONTROL_TAGS = ("input", "a", "select", "button")


@dataclass(frozen=True)
class NormalizationRules:
    """
    How raw cell text becomes a value.

    Whitespace is always trimmed/collapsed and `&nbsp;` filler becomes "". `casefold=True`
    lowercases every column; `casefold_columns` lowercases only the named ones.
    `rename` maps portal headers to our own keys (applied after case handling).
    """

    casefold: bool = False
    casefold_columns: frozenset[str] = frozenset()
    rename: Mapping[str, str] = field(default_factory=dict)

    def apply(self, header: str, value: str) -> str:
        if value in {"&nbsp;", "\xa0"}:
            return ""
        if self.casefold or header in self.casefold_columns:
            return value.lower()
        return value

    def key(self, header: str) -> str:
        return self.rename.get(header, header)


@dataclass(frozen=True)
class AnchorRule:
    """
    Row identifiers are not printed in the grid: each row carries a control whose id has a
    numeric suffix, and suffixes run consecutively from the first row.
    """

    pattern: str = SELECTORS.learner_view_anchor_pattern
    template: str = SELECTORS.learner_view_target_template


@dataclass
class TableRow:
    cells: dict[str, str]
    action_id: Optional[str] = None
    controls: list[str] = field(default_factory=list)
    index: int = 0

    def get(self, key: str, default: str = "") -> str:
        return self.cells.get(key, default)

    def control(self, contains: str) -> Optional[str]:
        """First control name/id containing `contains` (case-insensitive)."""
        needle = contains.lower()
        return next((c for c in self.controls if needle in c.lower()), None)


@dataclass(frozen=True)
class PageScope:
    paged: bool
    selected_category: Optional[str] = None
    selected_category_value: Optional[str] = None


DEFAULT_RULES = NormalizationRules()


def find_table(html: str, table_id: str = SELECTORS.grid_id) -> Optional[str]:
    """
    Outer HTML of the grid with the given id, or None when the page has no such table.
    """
    if not html or table_id not in html:
        return None
    el = BeautifulSoup(html, "html.parser").find("table", attrs={"id": table_id})
    return str(el) if isinstance(el, Tag) else None


def _direct_rows(table: Tag) -> list[Tag]:
    rows: list[Tag] = []
    for child in table.children:
        if not isinstance(child, Tag):
            continue
        if child.name == "tr":
            rows.append(child)
        elif child.name in {"thead", "tbody", "tfoot"}:
            rows.extend(r for r in child.children if isinstance(r, Tag) and r.name == "tr")
    return rows


def _direct_cells(row: Tag, names: tuple[str, ...]) -> list[Tag]:
    return [c for c in row.children if isinstance(c, Tag) and c.name in names]


def _row_controls(row: Tag) -> list[str]:
    out: list[str] = []
    for el in row.find_all(_CONTROL_TAGS):
        key = el.get("name") or el.get("id")
        if key and key not in out:
            out.append(str(key))
    return out


def _anchor_start(row: Tag, rule: AnchorRule) -> Optional[int]:
    rx = re.compile(rule.pattern)
    for el in row.find_all(attrs={"id": True}):
        m = rx.search(str(el.get("id")))
        if m:
            return int(m.group(1))
    return None


def extract(
    html_fragment: str,
    rules: Optional[NormalizationRules] = None,
    *,
    anchor: Optional[AnchorRule] = None,
) -> list[TableRow]:
    """
    Turn a GridView fragment into ordered rows keyed by header text.

    Only direct rows with as many cells as the header are data rows; pager and nested
    rows are skipped and all-empty rows dropped. With an `anchor` rule, row identifiers
    are inferred from the first data row; a non-empty table without that anchor raises
    ExtractionError.
    """
    rules = rules or DEFAULT_RULES
    if not html_fragment or not html_fragment.strip():
        return []

    soup = BeautifulSoup(html_fragment, "html.parser")
    table = soup.find("table")
    if not isinstance(table, Tag):
        raise ExtractionError("No table element found in fragment.", raw_snippet=snippet(html_fragment))

    rows = _direct_rows(table)
    if not rows:
        return []

    headers: list[str] = []
    body_rows = rows
    th = _direct_cells(rows[0], ("th",))
    if th:
        headers = [clean_text(c.get_text(" ")) or str(i) for i, c in enumerate(th)]
        body_rows = rows[1:]
    else:
        headers = [str(i) for i in range(len(_direct_cells(rows[0], ("td",))))]

    data: list[tuple[Tag, dict[str, str]]] = []
    for tr in body_rows:
        tds = _direct_cells(tr, ("td",))
        if len(tds) != len(headers):
            continue
        cells: dict[str, str] = {}
        for header, td in zip(headers, tds):
            cells[rules.key(header)] = rules.apply(header, clean_text(td.get_text(" ")))
        if not any(cells.values()):
            continue
        data.append((tr, cells))

    if not data:
        return []

    start: Optional[int] = None
    if anchor is not None:
        start = _anchor_start(data[0][0], anchor)
        if start is None:
            raise ExtractionError(
                "Row action anchor not found in the first data row.",
                raw_snippet=snippet(str(data[0][0])),
            )

    out: list[TableRow] = []
    for i, (tr, cells) in enumerate(data):
        action_id = anchor.template.format(n=start + i) if (anchor is not None and start is not None) else None
        out.append(TableRow(cells=cells, action_id=action_id, controls=_row_controls(tr), index=i))
    return out


def page_scope(html: str, *, grid_target: str = SELECTORS.grid_target) -> PageScope:
    """
    Whether the grid is split across pages, and which category option is selected.
    """
    text = html_lib.unescape(html or "")
    pager = re.compile(rf"__doPostBack\('{re.escape(grid_target)}','Page\$\d+'\)")
    paged = bool(pager.search(text))

    selected: Optional[tuple[str, str]] = None
    for key in (SELECTORS.category_id, SELECTORS.category_rendered_id, SELECTORS.category):
        selected = selected_option(html or "", key)
        if selected is not None:
            break
    if selected is None:
        return PageScope(paged=paged)
    value, label = selected
    return PageScope(paged=paged, selected_category=label.lower(), selected_category_value=value.strip())


def needs_page_size_change(scope: PageScope, requested_category: Optional[str] = None) -> bool:
    if scope.paged:
        return True
    if requested_category is None:
        return False
    wanted = " ".join(requested_category.lower().split())
    return wanted not in {scope.selected_category or "", scope.selected_category_value or ""}

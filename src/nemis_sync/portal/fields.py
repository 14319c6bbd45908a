from __future__ import annotations

import re
from typing import Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Tag


Markup = Union[str, BeautifulSoup, Tag]

_WS_RE = re.compile(r"\s+")


def clean_text(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WS_RE.sub(" ", value.replace("\xa0", " ")).strip()


def soup_of(markup: Markup) -> Union[BeautifulSoup, Tag]:
    if isinstance(markup, (BeautifulSoup, Tag)):
        return markup
    return BeautifulSoup(markup or "", "html.parser")


def _by_id_or_name(root: Union[BeautifulSoup, Tag], key: str, tag: Optional[str] = None) -> Optional[Tag]:
    el = root.find(tag, attrs={"id": key}) if tag else root.find(attrs={"id": key})
    if el is None:
        el = root.find(tag, attrs={"name": key}) if tag else root.find(attrs={"name": key})
    return el if isinstance(el, Tag) else None


def input_value(markup: Markup, key: str) -> Optional[str]:
    """
    `value` of an <input> (or text of a <textarea>) found by id or name.
    """
    root = soup_of(markup)
    el = _by_id_or_name(root, key, "input")
    if el is not None:
        return str(el.get("value") or "")
    area = _by_id_or_name(root, key, "textarea")
    if area is not None:
        return area.get_text()
    return None


def selected_option(markup: Markup, key: str) -> Optional[tuple[str, str]]:
    """
    (value, text) of the selected <option> of a <select>. Browsers fall back to the first
    option when none is marked selected, and so do we.
    """
    select = _by_id_or_name(soup_of(markup), key, "select")
    if select is None:
        return None
    options = select.find_all("option")
    if not options:
        return None
    chosen = next((o for o in options if o.has_attr("selected")), options[0])
    value = chosen.get("value")
    text = clean_text(chosen.get_text())
    return (str(value) if value is not None else text, text)


def element_text(markup: Markup, key: str) -> Optional[str]:
    """
    Normalized text of any element by id (or a CSS selector when `key` starts with `.` or `#`).
    """
    root = soup_of(markup)
    if key.startswith((".", "#")):
        el = root.select_one(key)
    else:
        el = _by_id_or_name(root, key)
    if el is None:
        return None
    return clean_text(el.get_text(" "))


def flag_enabled(markup: Markup, key: str) -> Optional[bool]:
    """
    Portal feature flags are hidden inputs like `txtCanAdmt` holding "1"/"0" (or "True"/"False").
    Only an explicit off value disables; a missing input is None.
    """
    raw = input_value(markup, key)
    if raw is None:
        return None
    return raw.strip().lower() not in {"0", "false", "no", "n"}


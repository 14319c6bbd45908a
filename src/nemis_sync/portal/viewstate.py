from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup

from ..errors import ProtocolError, snippet
from .session import (
    EVENTARGUMENT,
    EVENTTARGET,
    EVENTVALIDATION,
    LASTFOCUS,
    VIEWSTATE,
    VIEWSTATEENCRYPTED,
    VIEWSTATEGENERATOR,
    Session,
    ViewStateTokens,
)


logger = logging.getLogger(__name__)

_HIDDEN_FIELDS = (
    VIEWSTATE,
    EVENTVALIDATION,
    VIEWSTATEGENERATOR,
    VIEWSTATEENCRYPTED,
    EVENTTARGET,
    EVENTARGUMENT,
    LASTFOCUS,
)

# ASP.NET AJAX partial responses are a sequence of `length|type|id|content|` records.
_PAGE_REDIRECT_RE = re.compile(r"\|pageRedirect\|\|([^|]*)\|")


@dataclass(frozen=True)
class DeltaRecord:
    kind: str
    id: str
    content: str


def parse_delta(body: str) -> list[DeltaRecord]:
    """
    Split an AJAX partial-postback body into records.

    The length prefix counts content characters, so content may itself contain `|`.
    Raises ValueError on a malformed body.
    """
    records: list[DeltaRecord] = []
    pos = 0
    n = len(body)
    while pos < n:
        bar = body.index("|", pos)
        length = int(body[pos:bar])
        kind_end = body.index("|", bar + 1)
        kind = body[bar + 1 : kind_end]
        id_end = body.index("|", kind_end + 1)
        rec_id = body[kind_end + 1 : id_end]
        content_start = id_end + 1
        content_end = content_start + length
        if content_end > n or (content_end < n and body[content_end] != "|"):
            raise ValueError(f"malformed delta record at offset {pos}")
        records.append(DeltaRecord(kind=kind, id=rec_id, content=body[content_start:content_end]))
        pos = content_end + 1
        # Trailing whitespace/newlines after the last record are tolerated.
        if not body[pos:].strip():
            break
    return records


def page_redirect_target(body: str) -> Optional[str]:
    """
    Target of a `pageRedirect` delta record (URL-decoded path), if the body is one.
    """
    if not body or "pageRedirect" not in body:
        return None
    m = _PAGE_REDIRECT_RE.search(body)
    if not m:
        return None
    return unquote(m.group(1))


def _from_markup(body: str) -> dict[str, str]:
    if "__VIEWSTATE" not in body:
        return {}
    soup = BeautifulSoup(body, "html.parser")
    found: dict[str, str] = {}
    for name in _HIDDEN_FIELDS:
        el = soup.find("input", attrs={"id": name}) or soup.find("input", attrs={"name": name})
        if el is not None:
            found[name] = str(el.get("value") or "")
    return found


def _from_delta(body: str) -> dict[str, str]:
    found: dict[str, str] = {}
    try:
        for rec in parse_delta(body):
            if rec.kind == "hiddenField" and rec.id in _HIDDEN_FIELDS:
                found[rec.id] = rec.content
        return found
    except ValueError:
        logger.debug("Delta body did not parse by length prefix; falling back to delimiter scan.")

    for name in _HIDDEN_FIELDS:
        m = re.search(rf"\|hiddenField\|{re.escape(name)}\|([^|]*)\|", body)
        if m:
            found[name] = m.group(1)
    return found


def extract_tokens(body: str) -> Optional[ViewStateTokens]:
    """
    Parse the hidden protocol fields out of a response body.

    Structured markup is tried first (full pages); the delimiter-based delta format is the
    fallback (partial/AJAX responses). Returns None when neither yields a state blob.
    """
    if not body:
        return None
    fields = _from_markup(body)
    if not fields.get(VIEWSTATE):
        fields = _from_delta(body) if ("hiddenField" in body) else {}
    if not fields.get(VIEWSTATE):
        return None
    return ViewStateTokens(
        view_state=fields.get(VIEWSTATE, ""),
        event_validation=fields.get(EVENTVALIDATION, ""),
        view_state_generator=fields.get(VIEWSTATEGENERATOR, ""),
        view_state_encrypted=fields.get(VIEWSTATEENCRYPTED, ""),
        event_target=fields.get(EVENTTARGET, ""),
        event_argument=fields.get(EVENTARGUMENT, ""),
        last_focus=fields.get(LASTFOCUS, ""),
    )


def absorb(session: Session, body: str) -> ViewStateTokens:
    """
    Overwrite the session's token set with the one carried by `body`.

    Raises ProtocolError when no usable state token is present: continuing would post
    stale state, which the portal rejects (or worse, applies to the wrong page).
    """
    tokens = extract_tokens(body)
    if tokens is None:
        raise ProtocolError("Couldn't find any view state data in the portal response.", raw_snippet=snippet(body))
    session.view_state = tokens
    return tokens


def mark_stale(session: Session) -> None:
    session.view_state.stale = True

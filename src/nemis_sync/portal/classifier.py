from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, NamedTuple, Optional, Sequence

from ..errors import ERROR_BY_KIND, BusinessError, FailureKind, NetworkError, PortalError, snippet


class Classification(NamedTuple):
    kind: Optional[FailureKind]
    message: str = ""
    transient: bool = False
    phrase: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is None


OK = Classification(kind=None)


@dataclass(frozen=True)
class ClassifierContext:
    """
    Everything known about one round trip.

    `transport_error` is set (and the rest empty) when no response arrived at all.
    `business_phrases` are supplied by the operation being run; structural callers
    (the transport) leave them empty.
    """

    transport_error: str = ""
    status_code: Optional[int] = None
    body: str = ""
    final_path: str = ""
    during_login: bool = False
    business_phrases: Sequence[str] = ()


# Transport error code -> (message, transient)
TRANSPORT_ERRORS: Mapping[str, tuple[str, bool]] = {
    "ETIMEDOUT": ("Request has timed out", True),
    "ECONNRESET": ("Connection was reset while reaching the portal", True),
    "ECONNABORTED": ("Connection was aborted while reaching the portal", True),
    "ECONNREFUSED": ("Connection was refused by the portal", True),
    "ENOTFOUND": ("The portal address could not be resolved", False),
    "ETRANSPORT": ("Transport failure while reaching the portal", True),
}

# HTTP status -> (kind, message, transient)
STATUS_TABLE: Mapping[int, tuple[FailureKind, str, bool]] = {
    401: (FailureKind.SESSION_EXPIRED, "Unauthorized; the portal session is no longer valid", False),
    403: (FailureKind.AUTHENTICATION, "Forbidden", False),
    404: (FailureKind.PROTOCOL, "Page not found", False),
    500: (FailureKind.UNKNOWN, "Internal server error", False),
    502: (FailureKind.NETWORK, "Bad gateway", True),
    503: (FailureKind.NETWORK, "Service unavailable", True),
    504: (FailureKind.NETWORK, "Gateway timed out", True),
}

# Status-specific body prefixes that are recognized business answers.
STATUS_BODY_TABLE: Sequence[tuple[int, str, FailureKind, str]] = (
    (400, "No Form One Admission for", FailureKind.BUSINESS, "learner_not_found"),
)

# Login redirects are tiny delta bodies; a full page merely linking to Login.aspx is not one.
_LOGIN_REDIRECT_MAX_LEN = 200
_LOGIN_REDIRECT_RE = re.compile(r"pageRedirect.+Login\.aspx", re.I)
_ERROR_PAGE_RE = re.compile(r"pageRedirect\|\|%2fErrorPage\.aspx", re.I)
_LOGIN_PATHS = ("/login.aspx",)


def _match_phrase(body: str, phrases: Sequence[str]) -> str:
    lowered = (body or "").lower()
    for phrase in phrases:
        if phrase and phrase.lower() in lowered:
            return phrase
    return ""


def classify(ctx: ClassifierContext) -> Classification:
    """
    Map one round trip to a failure kind, or OK.

    Order matters: no response > login redirect > status tables > error page > business phrases.
    """
    if ctx.transport_error:
        message, transient = TRANSPORT_ERRORS.get(
            ctx.transport_error, (f"Transport failure ({ctx.transport_error})", True)
        )
        return Classification(FailureKind.NETWORK, message, transient)

    body = ctx.body or ""
    path = (ctx.final_path or "").lower()

    if path in _LOGIN_PATHS or (len(body) < _LOGIN_REDIRECT_MAX_LEN and _LOGIN_REDIRECT_RE.search(body)):
        if ctx.during_login:
            return Classification(FailureKind.AUTHENTICATION, "Login failed; the portal returned to its login page")
        return Classification(FailureKind.SESSION_EXPIRED, "Invalid session; got redirected to the login page")

    status = ctx.status_code
    if status is not None:
        for code, prefix, kind, phrase in STATUS_BODY_TABLE:
            if status == code and body.strip().startswith(prefix):
                return Classification(kind, body.strip()[:200], False, phrase)
        if status in STATUS_TABLE:
            kind, message, transient = STATUS_TABLE[status]
            return Classification(kind, message, transient)
        if status >= 500:
            return Classification(FailureKind.NETWORK, f"Portal returned HTTP {status}", True)
        if status >= 400:
            return Classification(FailureKind.UNKNOWN, f"Portal returned HTTP {status}")

    if _ERROR_PAGE_RE.search(body) or path == "/errorpage.aspx":
        if ctx.during_login:
            return Classification(FailureKind.AUTHENTICATION, "Invalid username or password")
        return Classification(FailureKind.UNKNOWN, "Portal redirected to its error page")

    phrase = _match_phrase(body, ctx.business_phrases)
    if phrase:
        return Classification(FailureKind.BUSINESS, phrase, False, phrase)

    return OK


def to_error(result: Classification, *, body: str = "", code: str = "") -> PortalError:
    """
    Build the exception for a non-OK classification.
    """
    if result.kind is None:
        raise ValueError("to_error() called with an OK classification")
    raw = snippet(body) if body else None
    if result.kind is FailureKind.NETWORK:
        return NetworkError(result.message, code=code, transient=result.transient, raw_snippet=raw)
    if result.kind is FailureKind.BUSINESS:
        return BusinessError(result.message, phrase=result.phrase, raw_snippet=raw)
    return ERROR_BY_KIND[result.kind](result.message, raw_snippet=raw)

from __future__ import annotations

import asyncio
import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..errors import ProtocolError


# Field names as the portal posts them.
VIEWSTATE = "__VIEWSTATE"
EVENTVALIDATION = "__EVENTVALIDATION"
VIEWSTATEGENERATOR = "__VIEWSTATEGENERATOR"
VIEWSTATEENCRYPTED = "__VIEWSTATEENCRYPTED"
EVENTTARGET = "__EVENTTARGET"
EVENTARGUMENT = "__EVENTARGUMENT"
LASTFOCUS = "__LASTFOCUS"
ASYNCPOST = "__ASYNCPOST"


@dataclass(frozen=True)
class PortalCredentials:
    username: str
    password: str = field(repr=False)


@dataclass
class ViewStateTokens:
    """
    The hidden protocol fields the portal needs on every postback.

    `stale` is set when a response redirected elsewhere without handing out new tokens;
    a stale set must be refreshed by a GET before the next postback is built.
    """

    view_state: str = ""
    event_validation: str = ""
    view_state_generator: str = ""
    event_target: str = ""
    event_argument: str = ""
    last_focus: str = ""
    view_state_encrypted: str = ""
    stale: bool = False

    def form_fields(self) -> dict[str, str]:
        """
        Hidden fields for the next postback. Event target/argument start empty; a postback
        that simulates a control event overrides them.
        """
        if not self.view_state:
            raise ProtocolError("No view state available; fetch the page before posting back.")
        if self.stale:
            raise ProtocolError("View state is stale (last response was a redirect); refusing to post back.")
        return {
            EVENTTARGET: "",
            EVENTARGUMENT: "",
            LASTFOCUS: self.last_focus,
            VIEWSTATE: self.view_state,
            VIEWSTATEGENERATOR: self.view_state_generator,
            VIEWSTATEENCRYPTED: self.view_state_encrypted,
            EVENTVALIDATION: self.event_validation,
        }

    def decoded_text(self) -> str:
        """
        Best-effort text view of the serialized state blob.

        Some outcomes (vacancies exhausted, transfer saved) are only reported inside it.
        """
        raw = (self.view_state or "").strip()
        if not raw:
            return ""
        padded = raw + "=" * (-len(raw) % 4)
        try:
            data = base64.b64decode(padded, validate=False)
        except (binascii.Error, ValueError):
            return ""
        return data.decode("utf-8", errors="ignore")


@dataclass
class Session:
    """
    One authenticated portal login for one institution account.

    Owned by exactly one caller; the portal keeps a single live page state per cookie, so
    operations on a session must run one at a time (see `lock`).
    """

    credentials: PortalCredentials = field(repr=False)
    cookies: dict[str, str] = field(default_factory=dict, repr=False)
    view_state: ViewStateTokens = field(default_factory=ViewStateTokens, repr=False)
    institution: str = ""
    authenticated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def identity(self) -> str:
        return self.institution or self.credentials.username

    @property
    def authenticated(self) -> bool:
        return self.authenticated_at is not None and bool(self.cookies)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def cookie_header(self) -> str:
        return "; ".join(f"{k}={v}" for k, v in self.cookies.items())

    def invalidate(self) -> None:
        """Forget cookies and tokens after the portal dropped the session."""
        self.cookies.clear()
        self.view_state = ViewStateTokens()
        self.authenticated_at = None
        self.expires_at = None

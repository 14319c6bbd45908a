from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from http.cookiejar import CookieJar, DefaultCookiePolicy
from http.cookies import CookieError, SimpleCookie
from typing import Any, Mapping, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from ..errors import AuthenticationError, NetworkError, SessionExpiredError, snippet
from .classifier import ClassifierContext, classify, to_error
from .selectors import PATHS, SELECTORS
from .session import PortalCredentials, Session
from .viewstate import absorb, mark_stale, page_redirect_target


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://nemis.education.go.ke"
DEFAULT_TIMEOUT_S = 60.0
MAX_REDIRECTS = 10

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/113.0.0.0 Safari/537.36"
)

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_LOGIN_OK_RE = re.compile(r"pageRedirect.+Default\.aspx", re.I)


class HeaderProfile(str, Enum):
    AJAX = "ajax"
    FULL_PAGE = "full_page"


PROFILE_HEADERS: Mapping[HeaderProfile, Mapping[str, str]] = {
    HeaderProfile.AJAX: {
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
        "Cache-Control": "no-cache",
        "Content-Type": _FORM_CONTENT_TYPE,
        "X-Requested-With": "XMLHttpRequest",
        "X-MicrosoftAjax": "Delta=true",
    },
    HeaderProfile.FULL_PAGE: {
        "User-Agent": USER_AGENT,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
            "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
        ),
        "Content-Type": _FORM_CONTENT_TYPE,
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
    },
}


@dataclass(frozen=True)
class RawResponse:
    status_code: int
    body: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def redirect_target(self) -> Optional[str]:
        """Target path of an AJAX `pageRedirect` answer, if this is one."""
        return page_redirect_target(self.body)

    def redirected_to(self, path: str) -> bool:
        target = urlsplit(self.redirect_target or "").path.lower()
        return self.path.lower() == path.lower() or target == path.lower()

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError:
            return None


def _no_cookie_jar() -> httpx.Cookies:
    # A jar whose policy accepts nothing: cookies belong to the Session, not the client.
    return httpx.Cookies(CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])))


def _transport_code(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    text = str(exc).lower()
    if isinstance(exc, httpx.ConnectError):
        if "name or service not known" in text or "getaddrinfo" in text or "nodename nor servname" in text:
            return "ENOTFOUND"
        if "reset" in text:
            return "ECONNRESET"
        return "ECONNREFUSED"
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    if isinstance(exc, httpx.CloseError):
        return "ECONNABORTED"
    return "ETRANSPORT"


def update_cookies(session: Session, headers: httpx.Headers) -> None:
    """
    Merge every Set-Cookie header into the session. An empty value deletes the cookie
    (that is how the portal signs a session out).
    """
    for raw in headers.get_list("set-cookie"):
        jar: SimpleCookie = SimpleCookie()
        try:
            jar.load(raw)
        except CookieError:
            logger.debug("Ignoring unparseable Set-Cookie header.")
            continue
        for name, morsel in jar.items():
            if morsel.value:
                session.cookies[name] = morsel.value
            else:
                session.cookies.pop(name, None)


class SessionTransport:
    """
    Raw HTTP for portal sessions.

    Stateless apart from the connection pool: cookies and tokens live on the `Session`
    passed to each call, so one transport can serve many institution accounts.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        session_ttl_s: Optional[float] = None,
        get_retries: int = 1,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = float(timeout_s)
        self.session_ttl_s = session_ttl_s
        self.get_retries = max(0, int(get_retries))
        self._logger = logger or logging.getLogger(__name__)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_s),
            follow_redirects=False,
            cookies=_no_cookie_jar(),
            transport=http_transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SessionTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def login(self, credentials: PortalCredentials, *, session: Optional[Session] = None) -> Session:
        """
        Authenticate and return a live session (or re-authenticate `session` in place).

        Success only when the portal redirects to Default.aspx; anything else raises
        AuthenticationError.
        """
        if not (credentials.username or "").strip() or not credentials.password:
            raise AuthenticationError("Username or password not provided")

        if session is None:
            session = Session(credentials=credentials)
        else:
            session.invalidate()
            session.credentials = credentials

        seed = await self.send(session, PATHS.home, during_login=True, login_page_ok=True)
        absorb(session, seed.body)

        fields = session.view_state.form_fields()
        fields.update(
            {
                SELECTORS.login_button: "Log In",
                SELECTORS.login_username: credentials.username,
                SELECTORS.login_password: credentials.password,
            }
        )
        resp = await self.send(
            session,
            PATHS.home,
            method="POST",
            fields=fields,
            profile=HeaderProfile.AJAX,
            during_login=True,
        )
        if not (_LOGIN_OK_RE.search(resp.body or "") or resp.path.lower() == PATHS.default.lower()):
            raise AuthenticationError(
                "Login failed; the portal did not redirect to Default.aspx.",
                raw_snippet=snippet(resp.body),
            )
        if not session.cookies:
            raise AuthenticationError("Login failed; the portal did not set a session cookie.")

        if resp.redirect_target:
            mark_stale(session)
        now = datetime.now(timezone.utc)
        session.authenticated_at = now
        session.expires_at = now + timedelta(seconds=self.session_ttl_s) if self.session_ttl_s else None
        self._logger.info("Logged in to portal account=%s", session.identity)
        return session

    async def send(
        self,
        session: Session,
        path: str,
        *,
        method: str = "GET",
        fields: Optional[Mapping[str, Any]] = None,
        profile: HeaderProfile = HeaderProfile.FULL_PAGE,
        multipart: bool = False,
        during_login: bool = False,
        login_page_ok: bool = False,
    ) -> RawResponse:
        """
        One logical round trip (redirects followed), checked against the structural failure
        tables. GETs are retried once on a transient NetworkError; POSTs never.
        """
        method = method.upper()
        attempts = 1 + (self.get_retries if method == "GET" else 0)
        attempt = 0
        while True:
            attempt += 1
            try:
                raw = await self._round_trip(session, path, method=method, fields=fields, profile=profile, multipart=multipart)
                self._check(session, raw, during_login=during_login, login_page_ok=login_page_ok)
                return raw
            except NetworkError as e:
                if not e.transient or attempt >= attempts:
                    raise
                self._logger.warning("Transient failure on GET %s (%s); retrying once.", path, e.message)

    def _check(self, session: Session, raw: RawResponse, *, during_login: bool, login_page_ok: bool) -> None:
        ctx = ClassifierContext(
            status_code=raw.status_code,
            body=raw.body,
            final_path="" if login_page_ok else raw.path,
            during_login=during_login,
        )
        result = classify(ctx)
        if result.ok:
            return
        err = to_error(result, body=raw.body)
        if isinstance(err, SessionExpiredError):
            self._logger.info("Portal session expired account=%s", session.identity)
            session.invalidate()
        raise err

    async def _round_trip(
        self,
        session: Session,
        path: str,
        *,
        method: str,
        fields: Optional[Mapping[str, Any]],
        profile: HeaderProfile,
        multipart: bool,
    ) -> RawResponse:
        headers = dict(PROFILE_HEADERS[profile])
        kwargs: dict[str, Any] = {}
        if method != "GET" and fields is not None:
            payload = {k: "" if v is None else str(v) for k, v in fields.items()}
            if multipart:
                headers.pop("Content-Type", None)
                kwargs["files"] = {k: (None, v) for k, v in payload.items()}
            else:
                kwargs["data"] = payload
        elif method == "GET":
            headers.pop("Content-Type", None)

        url = path
        for _ in range(MAX_REDIRECTS + 1):
            if session.cookies:
                headers["Cookie"] = session.cookie_header()
            else:
                headers.pop("Cookie", None)
            self._logger.debug("%s %s", method, url)
            try:
                resp = await self._client.request(method, url, headers=headers, **kwargs)
            except httpx.HTTPError as e:
                code = _transport_code(e)
                result = classify(ClassifierContext(transport_error=code))
                raise to_error(result, code=code) from e

            update_cookies(session, resp.headers)
            location = resp.headers.get("location")
            if resp.is_redirect and location:
                url = urljoin(str(resp.url), location)
                if resp.status_code in (301, 302, 303):
                    method = "GET"
                    kwargs = {}
                    headers.pop("Content-Type", None)
                continue

            return RawResponse(
                status_code=resp.status_code,
                body=resp.text,
                path=urlsplit(str(resp.url)).path or "/",
                headers=dict(resp.headers),
            )

        raise NetworkError(f"Too many redirects while fetching {path}", code="ETRANSPORT", transient=False)

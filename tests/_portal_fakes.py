from __future__ import annotations

import re
from typing import Callable, Optional, Sequence, Union
from urllib.parse import parse_qsl, quote

import httpx

from nemis_sync.portal.client import PortalClient
from nemis_sync.portal.session import Session
from nemis_sync.portal.transport import SessionTransport


BASE_URL = "http://portal.test"

Reply = Callable[[httpx.Request], httpx.Response]

_MULTIPART_FIELD_RE = re.compile(
    r'name="(?P<name>[^"]+)"(?:\r\nContent-Type: [^\r\n]*)?\r\n\r\n(?P<value>.*?)\r\n--',
    re.S,
)


def tokens_html(view_state: str = "VS1", event_validation: str = "EV1", generator: str = "GEN1") -> str:
    return (
        f'<input type="hidden" name="__VIEWSTATE" id="__VIEWSTATE" value="{view_state}" />'
        f'<input type="hidden" name="__VIEWSTATEGENERATOR" id="__VIEWSTATEGENERATOR" value="{generator}" />'
        f'<input type="hidden" name="__EVENTVALIDATION" id="__EVENTVALIDATION" value="{event_validation}" />'
    )


def page(body: str = "", *, view_state: str = "VS1", event_validation: str = "EV1") -> str:
    return (
        "<html><head><title>NEMIS</title></head><body><form method=\"post\">"
        f"{tokens_html(view_state, event_validation)}{body}</form></body></html>"
    )


def delta(*records: tuple[str, str, str]) -> str:
    return "".join(f"{len(content)}|{kind}|{rid}|{content}|" for kind, rid, content in records)


def delta_tokens(view_state: str, event_validation: str = "EV-D", *extra: tuple[str, str, str]) -> str:
    return delta(
        *extra,
        ("hiddenField", "__VIEWSTATE", view_state),
        ("hiddenField", "__VIEWSTATEGENERATOR", "GEN1"),
        ("hiddenField", "__EVENTVALIDATION", event_validation),
    )


def page_redirect(path: str) -> str:
    return delta(("pageRedirect", "", quote(path, safe="")))


def html(body: str, *, status: int = 200, headers: Optional[Sequence[tuple[str, str]]] = None) -> Reply:
    def reply(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body, headers=list(headers or []))

    return reply


def redirect(location: str, *, status: int = 302, headers: Optional[Sequence[tuple[str, str]]] = None) -> Reply:
    def reply(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, headers=[("Location", location), *(headers or [])])

    return reply


def fail(exc: Exception) -> Reply:
    def reply(request: httpx.Request) -> httpx.Response:
        raise exc

    return reply


def form_of(request: httpx.Request) -> dict[str, str]:
    """Posted fields of a urlencoded or multipart request."""
    body = request.content.decode("utf-8", errors="replace")
    ctype = request.headers.get("content-type", "")
    if ctype.startswith("multipart/form-data"):
        return {m.group("name"): m.group("value") for m in _MULTIPART_FIELD_RE.finditer(body)}
    return dict(parse_qsl(body, keep_blank_values=True))


class FakePortal:
    """
    Scripted portal: each (method, path) route plays its replies in order and then keeps
    repeating the last one. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []
        self.login_count = 0

    def on(self, method: str, path: str, *replies: Union[Reply, str]) -> "FakePortal":
        queue = self.routes.setdefault((method.upper(), path.lower()), [])
        for r in replies:
            queue.append(html(r) if isinstance(r, str) else r)
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path.lower()))
        if not queue:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        return reply(request)

    def with_login(self, *, cookie: str = "ASP.NET_SessionId=abc123") -> "FakePortal":
        def login_post(request: httpx.Request) -> httpx.Response:
            self.login_count += 1
            return httpx.Response(
                200,
                text=page_redirect("/Default.aspx"),
                headers=[("Set-Cookie", f"{cookie}; path=/; HttpOnly")],
            )

        self.on("GET", "/", redirect("/Login.aspx"))
        self.on("GET", "/Login.aspx", html(page("<div id='login'></div>", view_state="VS-LOGIN")))
        self.on("POST", "/", login_post)
        return self

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.lower() == path.lower()]

    def posts(self, path: str) -> list[dict[str, str]]:
        return [form_of(r) for r in self.calls("POST", path)]

    def transport(self, **kwargs) -> SessionTransport:
        return SessionTransport(base_url=BASE_URL, http_transport=httpx.MockTransport(self.handle), **kwargs)

    def client(self, **kwargs) -> PortalClient:
        transport_kwargs = {k: kwargs.pop(k) for k in ("session_ttl_s", "get_retries") if k in kwargs}
        return PortalClient(self.transport(**transport_kwargs), **kwargs)


def new_session(institution: str = "school-a") -> Session:
    return PortalClient.new_session("user1", "secret", institution=institution)

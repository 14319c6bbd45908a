from __future__ import annotations

import asyncio

import httpx
import pytest

from _portal_fakes import FakePortal, fail, html, new_session, page, page_redirect, redirect
from nemis_sync.errors import AuthenticationError, NetworkError, SessionExpiredError
from nemis_sync.portal.session import PortalCredentials
from nemis_sync.portal.transport import HeaderProfile, RawResponse


def test_login_seeds_tokens_and_stores_cookie() -> None:
    portal = FakePortal().with_login()

    async def run() -> None:
        async with portal.transport(session_ttl_s=600) as t:
            session = await t.login(PortalCredentials("user1", "secret"))
            assert session.cookies == {"ASP.NET_SessionId": "abc123"}
            assert session.authenticated
            assert session.expires_at is not None
            # The login answer was a redirect, so the tokens must be refreshed before posting.
            assert session.view_state.stale is True

    asyncio.run(run())

    posted = portal.posts("/")[0]
    assert posted["__VIEWSTATE"] == "VS-LOGIN"
    assert posted["ctl00$ContentPlaceHolder1$Login1$UserName"] == "user1"
    assert posted["ctl00$ContentPlaceHolder1$Login1$Password"] == "secret"
    assert portal.calls("POST", "/")[0].headers["X-Requested-With"] == "XMLHttpRequest"


def test_login_without_credentials_fails_before_any_request() -> None:
    portal = FakePortal().with_login()

    async def run() -> None:
        async with portal.transport() as t:
            with pytest.raises(AuthenticationError):
                await t.login(PortalCredentials("", "secret"))

    asyncio.run(run())
    assert portal.requests == []


def test_login_rejected_when_portal_does_not_redirect_home() -> None:
    portal = FakePortal()
    portal.on("GET", "/", page("<div>login</div>"))
    portal.on("POST", "/", page_redirect("/ErrorPage.aspx"))

    async def run() -> None:
        async with portal.transport() as t:
            with pytest.raises(AuthenticationError):
                await t.login(PortalCredentials("user1", "wrong"))

    asyncio.run(run())


def test_login_rejected_when_portal_sets_no_session_cookie() -> None:
    portal = FakePortal()
    portal.on("GET", "/", page("<div>login</div>"))
    portal.on("POST", "/", page_redirect("/Default.aspx"))

    async def run() -> None:
        async with portal.transport() as t:
            with pytest.raises(AuthenticationError) as exc:
                await t.login(PortalCredentials("user1", "secret"))
            assert "cookie" in exc.value.message

    asyncio.run(run())


def test_redirect_target_matches_on_path_only() -> None:
    body = page_redirect("/Learner/Studindexreq.aspx?x=1")
    raw = RawResponse(status_code=200, body=body, path="/Learner/Studindex.aspx")
    assert raw.redirected_to("/Learner/Studindexreq.aspx")
    assert not raw.redirected_to("/Learner/Studindexchk.aspx")


def test_cookie_is_sent_across_redirect_hops() -> None:
    portal = FakePortal().with_login()
    portal.on(
        "POST",
        "/Learner/Studindex.aspx",
        redirect("/Learner/Studindexchk.aspx", headers=[("Set-Cookie", "hop=1; path=/")]),
    )
    portal.on("GET", "/Learner/Studindexchk.aspx", page("<p>confirm</p>"))

    async def run() -> RawResponse:
        async with portal.transport() as t:
            session = await t.login(PortalCredentials("user1", "secret"))
            return await t.send(session, "/Learner/Studindex.aspx", method="POST", fields={"a": "1"})

    raw = asyncio.run(run())
    assert raw.path == "/Learner/Studindexchk.aspx"
    hop = portal.calls("GET", "/Learner/Studindexchk.aspx")[0]
    assert "ASP.NET_SessionId=abc123" in hop.headers["Cookie"]
    assert "hop=1" in hop.headers["Cookie"]


def test_get_is_retried_once_on_transient_failure() -> None:
    portal = FakePortal()
    portal.on("GET", "/Institution/Institution.aspx", html("bad gateway", status=502), page("<p>ok</p>"))

    async def run() -> RawResponse:
        async with portal.transport() as t:
            return await t.send(new_session(), "/Institution/Institution.aspx")

    raw = asyncio.run(run())
    assert raw.status_code == 200
    assert len(portal.calls("GET", "/Institution/Institution.aspx")) == 2


def test_get_gives_up_after_one_retry() -> None:
    portal = FakePortal()
    portal.on("GET", "/Institution/Institution.aspx", html("unavailable", status=503))

    async def run() -> None:
        async with portal.transport() as t:
            with pytest.raises(NetworkError) as exc:
                await t.send(new_session(), "/Institution/Institution.aspx")
            assert exc.value.transient is True

    asyncio.run(run())
    assert len(portal.calls("GET", "/Institution/Institution.aspx")) == 2


def test_post_is_never_retried() -> None:
    portal = FakePortal()
    portal.on("POST", "/Learner/Studindex.aspx", html("bad gateway", status=502), page("<p>ok</p>"))

    async def run() -> None:
        async with portal.transport() as t:
            with pytest.raises(NetworkError):
                await t.send(new_session(), "/Learner/Studindex.aspx", method="POST", fields={"a": "1"})

    asyncio.run(run())
    assert len(portal.calls("POST", "/Learner/Studindex.aspx")) == 1


def test_timeout_maps_to_network_error_code() -> None:
    portal = FakePortal()
    portal.on("GET", "/Learner/Listlearners.aspx", fail(httpx.ReadTimeout("timed out")))

    async def run() -> None:
        async with portal.transport(get_retries=0) as t:
            with pytest.raises(NetworkError) as exc:
                await t.send(new_session(), "/Learner/Listlearners.aspx")
            assert exc.value.code == "ETIMEDOUT"
            assert exc.value.message == "Request has timed out"

    asyncio.run(run())


def test_login_redirect_expires_session() -> None:
    portal = FakePortal().with_login()
    portal.on("GET", "/Learner/Listlearners.aspx", redirect("/Login.aspx?ReturnUrl=%2fLearner%2fListlearners.aspx"))

    async def run() -> None:
        async with portal.transport() as t:
            session = await t.login(PortalCredentials("user1", "secret"))
            with pytest.raises(SessionExpiredError):
                await t.send(session, "/Learner/Listlearners.aspx")
            assert session.cookies == {}
            assert not session.authenticated

    asyncio.run(run())


def test_multipart_post_carries_fields() -> None:
    portal = FakePortal()
    portal.on("POST", "/Learner/alearner.aspx", page("<p>saved</p>"))

    async def run() -> None:
        async with portal.transport() as t:
            await t.send(
                new_session(),
                "/Learner/alearner.aspx",
                method="POST",
                fields={"ctl00$ContentPlaceHolder1$Surname": "kamau", "ctl00$ContentPlaceHolder1$UPI": ""},
                multipart=True,
            )

    asyncio.run(run())
    request = portal.calls("POST", "/Learner/alearner.aspx")[0]
    assert request.headers["content-type"].startswith("multipart/form-data")
    posted = portal.posts("/Learner/alearner.aspx")[0]
    assert posted["ctl00$ContentPlaceHolder1$Surname"] == "kamau"
    assert posted["ctl00$ContentPlaceHolder1$UPI"] == ""


def test_header_profiles_differ() -> None:
    portal = FakePortal()
    portal.on("POST", "/Learner/Studindex.aspx", page())

    async def run() -> None:
        async with portal.transport() as t:
            await t.send(new_session(), "/Learner/Studindex.aspx", method="POST", fields={}, profile=HeaderProfile.AJAX)
            await t.send(new_session(), "/Learner/Studindex.aspx", method="POST", fields={})

    asyncio.run(run())
    ajax, full = portal.calls("POST", "/Learner/Studindex.aspx")
    assert ajax.headers["X-MicrosoftAjax"] == "Delta=true"
    assert "X-MicrosoftAjax" not in full.headers
    assert full.headers["Upgrade-Insecure-Requests"] == "1"

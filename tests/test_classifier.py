from __future__ import annotations

import pytest

from nemis_sync.errors import (
    AuthenticationError,
    BusinessError,
    FailureKind,
    NetworkError,
    SessionExpiredError,
    UnknownError,
)
from nemis_sync.portal.classifier import ClassifierContext, classify, to_error


def test_transport_errors_win() -> None:
    result = classify(ClassifierContext(transport_error="ETIMEDOUT", status_code=200, body="ok"))
    assert result.kind is FailureKind.NETWORK
    assert result.message == "Request has timed out"
    assert result.transient is True

    dns = classify(ClassifierContext(transport_error="ENOTFOUND"))
    assert dns.transient is False


def test_login_redirect_is_session_expired_outside_login() -> None:
    body = "31|pageRedirect||%2fLogin.aspx%3fReturnUrl|"
    assert classify(ClassifierContext(status_code=200, body=body)).kind is FailureKind.SESSION_EXPIRED
    assert classify(ClassifierContext(status_code=200, body=body, during_login=True)).kind is FailureKind.AUTHENTICATION
    assert classify(ClassifierContext(status_code=200, body="", final_path="/Login.aspx")).kind is FailureKind.SESSION_EXPIRED


def test_full_page_linking_to_login_is_not_a_redirect() -> None:
    body = "<html>" + ("x" * 300) + "pageRedirect <a href='/Login.aspx'>login</a></html>"
    assert classify(ClassifierContext(status_code=200, body=body)).ok


def test_login_redirect_checked_before_status() -> None:
    result = classify(ClassifierContext(status_code=500, body="", final_path="/login.aspx"))
    assert result.kind is FailureKind.SESSION_EXPIRED


@pytest.mark.parametrize(
    "status,kind,transient",
    [
        (401, FailureKind.SESSION_EXPIRED, False),
        (403, FailureKind.AUTHENTICATION, False),
        (404, FailureKind.PROTOCOL, False),
        (500, FailureKind.UNKNOWN, False),
        (502, FailureKind.NETWORK, True),
        (503, FailureKind.NETWORK, True),
        (504, FailureKind.NETWORK, True),
        (418, FailureKind.UNKNOWN, False),
    ],
)
def test_status_table(status: int, kind: FailureKind, transient: bool) -> None:
    result = classify(ClassifierContext(status_code=status, body="oops"))
    assert result.kind is kind
    assert result.transient is transient


def test_status_body_table_recognizes_missing_learner() -> None:
    result = classify(ClassifierContext(status_code=400, body="No Form One Admission for 12345678901"))
    assert result.kind is FailureKind.BUSINESS
    assert result.phrase == "learner_not_found"


def test_error_page_redirect() -> None:
    body = "27|pageRedirect||%2fErrorPage.aspx|"
    assert classify(ClassifierContext(status_code=200, body=body)).kind is FailureKind.UNKNOWN
    assert classify(ClassifierContext(status_code=200, body=body, during_login=True)).kind is FailureKind.AUTHENTICATION


def test_business_phrases_are_last_and_case_insensitive() -> None:
    ctx = ClassifierContext(status_code=200, body="<b>school vacacies ARE exhausted!!</b>", business_phrases=("School Vacacies are exhausted!!",))
    result = classify(ctx)
    assert result.kind is FailureKind.BUSINESS
    assert result.phrase == "School Vacacies are exhausted!!"
    assert classify(ClassifierContext(status_code=200, body="all good")).ok


def test_to_error_builds_typed_exceptions() -> None:
    err = to_error(classify(ClassifierContext(transport_error="ECONNRESET")), code="ECONNRESET")
    assert isinstance(err, NetworkError) and err.code == "ECONNRESET" and err.transient

    err = to_error(classify(ClassifierContext(status_code=401)), body="denied")
    assert isinstance(err, SessionExpiredError)
    assert err.raw_snippet == "denied"

    err = to_error(classify(ClassifierContext(status_code=400, body="No Form One Admission for x")))
    assert isinstance(err, BusinessError) and err.phrase == "learner_not_found"

    err = to_error(classify(ClassifierContext(status_code=200, body="27|pageRedirect||%2fErrorPage.aspx|", during_login=True)))
    assert isinstance(err, AuthenticationError)

    err = to_error(classify(ClassifierContext(status_code=500)))
    assert isinstance(err, UnknownError) and err.raw_snippet == ""

    with pytest.raises(ValueError):
        to_error(classify(ClassifierContext(status_code=200, body="fine")))

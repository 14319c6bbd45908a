from __future__ import annotations

import logging

from nemis_sync.logging_config import RedactSecretsFilter


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord("nemis_sync", logging.INFO, __file__, 1, msg, args, None)


def test_redacts_cookie_view_state_and_password() -> None:
    record = _record(
        "Cookie: %s body=%s",
        "ASP.NET_SessionId=abc123; other=1",
        "__VIEWSTATE=dDwtMTQ&ctl00$ContentPlaceHolder1$Login1$Password=hunter2&x=1",
    )
    assert RedactSecretsFilter().filter(record) is True
    text = record.getMessage()
    assert "abc123" not in text
    assert "dDwtMTQ" not in text
    assert "hunter2" not in text
    assert "ASP.NET_SessionId=***" in text
    assert "x=1" in text


def test_leaves_ordinary_messages_alone() -> None:
    record = _record("Running %s account=%s", "admit", "school-a")
    RedactSecretsFilter().filter(record)
    assert record.args == ("admit", "school-a")
    assert record.getMessage() == "Running admit account=school-a"

from __future__ import annotations

from enum import Enum
from typing import Optional


# Raw snippets are for diagnosis only; keep them short enough to log.
SNIPPET_LIMIT = 600


class FailureKind(str, Enum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    SESSION_EXPIRED = "session_expired"
    PROTOCOL = "protocol"
    BUSINESS = "business"
    UNKNOWN = "unknown"


def snippet(body: Optional[str], limit: int = SNIPPET_LIMIT) -> Optional[str]:
    if body is None:
        return None
    text = " ".join(str(body).split())
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class PortalError(RuntimeError):
    """
    Base class for every failure raised while talking to the portal.

    Each subclass is bound to one `FailureKind` so the operation layer can turn any
    raised error into a `Failure` outcome without inspecting messages.
    """

    kind: FailureKind = FailureKind.UNKNOWN
    transient: bool = False

    def __init__(self, message: str, *, raw_snippet: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.raw_snippet = raw_snippet


class NetworkError(PortalError):
    """
    No usable response: timeout, connection reset, DNS failure or a gateway status.
    """

    kind = FailureKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        transient: bool = True,
        raw_snippet: Optional[str] = None,
    ) -> None:
        super().__init__(message, raw_snippet=raw_snippet)
        self.code = code
        self.transient = transient


class AuthenticationError(PortalError):
    """Credentials rejected, or a session could not be re-established."""

    kind = FailureKind.AUTHENTICATION


class SessionExpiredError(PortalError):
    """The portal redirected a live session back to its login page."""

    kind = FailureKind.SESSION_EXPIRED


class ProtocolError(PortalError):
    """
    Hidden state tokens or expected markup could not be parsed.

    Fatal for the current call: any further postback would carry invalid state.
    """

    kind = FailureKind.PROTOCOL


class ExtractionError(ProtocolError):
    """A table or field could not be turned into structured rows."""


class BusinessError(PortalError):
    """A recognized negative answer from the portal (e.g. vacancies exhausted)."""

    kind = FailureKind.BUSINESS

    def __init__(self, message: str, *, phrase: str = "", raw_snippet: Optional[str] = None) -> None:
        super().__init__(message, raw_snippet=raw_snippet)
        self.phrase = phrase


class UnknownError(PortalError):
    """Unrecognized response. Always carries a raw snippet."""

    kind = FailureKind.UNKNOWN

    def __init__(self, message: str, *, raw_snippet: Optional[str] = None) -> None:
        super().__init__(message, raw_snippet=raw_snippet if raw_snippet is not None else "")


ERROR_BY_KIND: dict[FailureKind, type[PortalError]] = {
    FailureKind.NETWORK: NetworkError,
    FailureKind.AUTHENTICATION: AuthenticationError,
    FailureKind.SESSION_EXPIRED: SessionExpiredError,
    FailureKind.PROTOCOL: ProtocolError,
    FailureKind.BUSINESS: BusinessError,
    FailureKind.UNKNOWN: UnknownError,
}

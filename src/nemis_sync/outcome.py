from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from .errors import BusinessError, FailureKind, NetworkError, PortalError


T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    data: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    raw_snippet: Optional[str] = None
    phrase: str = ""
    transient: bool = False

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, err: PortalError) -> "Failure":
        return cls(
            kind=err.kind,
            message=err.message,
            raw_snippet=err.raw_snippet,
            phrase=err.phrase if isinstance(err, BusinessError) else "",
            transient=err.transient if isinstance(err, NetworkError) else False,
        )


Outcome = Union[Success[Any], Failure]


def outcome_to_dict(outcome: Outcome) -> dict[str, Any]:
    """
    JSON-friendly view of an outcome (used by the CLI).
    """
    if isinstance(outcome, Success):
        data = outcome.data
        if isinstance(data, list):
            payload: Any = [_dump(x) for x in data]
        else:
            payload = _dump(data)
        return {"ok": True, "data": payload}
    return {
        "ok": False,
        "kind": outcome.kind.value,
        "message": outcome.message,
        "phrase": outcome.phrase or None,
        "transient": outcome.transient,
        "raw_snippet": outcome.raw_snippet,
    }


def _dump(value: Any) -> Any:
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    return value

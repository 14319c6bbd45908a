from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional


@dataclass(frozen=True)
class OperationPhrases:
    """
    Text the portal uses to report the result of one operation.

    Matching is case-insensitive substring matching. `business` phrases are known negative
    answers; `success` phrases confirm the write; `conflict` phrases are prompts that may
    be answered with the ignore flag.
    """

    success: tuple[str, ...] = ()
    business: tuple[str, ...] = ()
    conflict: tuple[str, ...] = ()

    def first_success(self, text: str) -> Optional[str]:
        return _first(text, self.success)

    def first_business(self, text: str) -> Optional[str]:
        return _first(text, self.business)

    def first_conflict(self, text: str) -> Optional[str]:
        return _first(text, self.conflict)


def _first(text: str, phrases: Iterable[str]) -> Optional[str]:
    lowered = (text or "").lower()
    for p in phrases:
        if p and p.lower() in lowered:
            return p
    return None


VACANCIES_EXHAUSTED = "School Vacacies are exhausted!!"
REQUEST_SAVED = "Request Successfully Saved!!"
ADMITTED = "THE STUDENT HAS BEEN ADMITTED TO THE SCHOOL. ENSURE YOU CAPTURE BIO-DATA"
REQUEST_FIRST = "request learner first"
NEW_UPI = "New UPI:"
BIODATA_SAVED = "The Learner Basic Details have been Saved successfully"
BIODATA_FAILURE = "Failure!"
IGNORE_ERROR_PROMPT = "do you want to ignore this error"
TRANSFER_SAVED = "The Transfer Request Saved"
LEARNER_NOT_FOUND = "learner not found"
ADMISSION_DISABLED = "Admitting learners is currently disabled"
REQUEST_DISABLED = "Requesting learners is currently disabled"


@dataclass(frozen=True)
class PhraseCatalog:
    """
    Phrase sets per operation, keyed by `OperationKind.value`.
    """

    by_operation: Mapping[str, OperationPhrases] = field(default_factory=dict)

    def for_operation(self, name: str) -> OperationPhrases:
        return self.by_operation.get(name, OperationPhrases())

    def with_overrides(self, overrides: Mapping[str, Mapping[str, Iterable[str]]]) -> "PhraseCatalog":
        """
        New catalog with configured phrase lists replacing (not extending) the defaults,
        one list at a time.
        """
        merged = dict(self.by_operation)
        for op, sets in (overrides or {}).items():
            base = merged.get(op, OperationPhrases())
            update = {k: tuple(v) for k, v in sets.items() if k in {"success", "business", "conflict"}}
            merged[op] = replace(base, **update)
        return PhraseCatalog(by_operation=merged)


DEFAULT_PHRASES = PhraseCatalog(
    by_operation={
        "search_learner": OperationPhrases(business=(LEARNER_NOT_FOUND,)),
        "request_placement": OperationPhrases(
            success=(REQUEST_SAVED,),
            business=(VACANCIES_EXHAUSTED,),
        ),
        "admit": OperationPhrases(
            success=(ADMITTED,),
            business=(REQUEST_FIRST,),
        ),
        "capture_biodata": OperationPhrases(
            success=(NEW_UPI, BIODATA_SAVED),
            business=(BIODATA_FAILURE,),
            conflict=(IGNORE_ERROR_PROMPT,),
        ),
        "transfer": OperationPhrases(success=(TRANSFER_SAVED,)),
    }
)

from __future__ import annotations

import re
from typing import Mapping


# Portal class codes used by the grade/category selects.
GRADE_CODES: Mapping[str, int] = {
    "form 1": 12,
    "form 2": 13,
    "form 3": 14,
    "form 4": 15,
    "pp 1": 16,
    "pp 2": 17,
    "grade 1": 18,
    "grade 2": 19,
    "grade 3": 20,
    "grade 4": 21,
    "grade 5": 22,
    "grade 6": 23,
    "grade 7": 24,
    "grade 8": 25,
    "grade 9": 26,
    "grade 10": 27,
    "grade 11": 28,
}

# Ordered: first match wins.
_NATIONALITY_PATTERNS: tuple[tuple[str, int], ...] = (
    (r"ke", 1),
    (r"su", 2),
    (r"tan", 3),
    (r"som", 4),
    (r"et", 5),
    (r"eu|ame", 6),
    (r"afr", 7),
    (r"ot", 8),
)

_MEDICAL_PATTERNS: tuple[tuple[str, int], ...] = (
    (r"an", 1),  # anemia
    (r"as", 2),  # asthma
    (r"con", 3),  # convulsions
    (r"dia", 4),  # diabetes
    (r"epi", 5),  # epilepsy
)

_GRADE_RE = re.compile(r"^\s*(form|grade|pp)\s*-?\s*(\d{1,2})\s*$", re.I)


def normalize_grade(value: str) -> str:
    """
    Normalize "Form 1", "form1", "GRADE 7" to the portal's canonical lowercase names.
    """
    m = _GRADE_RE.match(value or "")
    if not m:
        raise ValueError(f"Unknown grade: {value!r}")
    grade = f"{m.group(1).lower()} {int(m.group(2))}"
    if grade not in GRADE_CODES:
        raise ValueError(f"Grade out of range: {value!r}")
    return grade


def grade_code(grade: str) -> int:
    return GRADE_CODES[normalize_grade(grade)]


def nationality_code(nationality: str) -> int:
    s = (nationality or "").strip().lower()
    for pattern, code in _NATIONALITY_PATTERNS:
        if re.search(pattern, s):
            return code
    return 1


def medical_condition_code(condition: str) -> int:
    s = (condition or "").strip().lower()
    if not s or s == "none":
        return 0
    for pattern, code in _MEDICAL_PATTERNS:
        if re.search(pattern, s):
            return code
    return 0

from .dates import format_postback_date, parse_portal_date
from .codes import grade_code, medical_condition_code, nationality_code, normalize_grade
from .names import split_names

__all__ = [
    "format_postback_date",
    "parse_portal_date",
    "grade_code",
    "medical_condition_code",
    "nationality_code",
    "normalize_grade",
    "split_names",
]

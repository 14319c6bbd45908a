from __future__ import annotations

from datetime import date
from typing import Optional

from dateutil import parser as date_parser


def parse_portal_date(value: Optional[str]) -> Optional[date]:
    """
    Parse dates as the portal renders them in listings (day first):
    - "26-12-2010"
    - "26/12/2010"
    - "26-Dec-2010"

    Returns None for empty cells instead of raising, since most grid columns are optional.
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    dt = date_parser.parse(s, dayfirst=True, yearfirst=False)
    return dt.date()


def format_postback_date(value: date) -> str:
    # The date picker expects M/D/YYYY without zero padding.
    return f"{value.month}/{value.day}/{value.year}"

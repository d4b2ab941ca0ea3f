"""City of Johannesburg financial-year helpers.

The municipal year runs 1 July – 30 June: FY "2024/25" covers
2024-07-01 .. 2025-06-30.  Tariff rules are published per financial year,
so every tariff lookup goes through :func:`financial_year_for`.
"""

import re
from datetime import date

_FY_RE = re.compile(r'^(\d{4})/(\d{2})$')


def financial_year_for(day: date) -> str:
    """Return the financial year ("YYYY/YY") a date falls in."""
    start = day.year if day.month >= 7 else day.year - 1
    return f"{start}/{str(start + 1)[-2:]}"


def _start_year(fy: str) -> int:
    match = _FY_RE.match(fy.strip()) if isinstance(fy, str) else None
    if not match:
        raise ValueError(f"Not a financial year: {fy!r}")
    start = int(match.group(1))
    if str(start + 1)[-2:] != match.group(2):
        raise ValueError(f"Financial year {fy!r} does not span consecutive years")
    return start


def previous_financial_year(fy: str) -> str:
    start = _start_year(fy) - 1
    return f"{start}/{str(start + 1)[-2:]}"


def financial_year_bounds(fy: str) -> tuple[date, date]:
    """First and last day of a financial year."""
    start = _start_year(fy)
    return date(start, 7, 1), date(start + 1, 6, 30)

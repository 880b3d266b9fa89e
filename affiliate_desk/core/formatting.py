"""Indian-style (dd/mm/yyyy) dates for payout listings, mails and TDS statements."""
from __future__ import annotations

from datetime import date, datetime

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
DISPLAY_DATETIME_FORMAT = "%d/%m/%Y %I:%M %p"


def format_display_date(value: date | datetime | None, placeholder: str = "") -> str:
    if value is None:
        return placeholder
    return value.strftime(DISPLAY_DATE_FORMAT)


def format_display_datetime(value: datetime | None, placeholder: str = "") -> str:
    """Date and 12-hour time of a bank transaction, or ``placeholder`` before one exists."""
    if value is None:
        return placeholder
    return value.strftime(DISPLAY_DATETIME_FORMAT)

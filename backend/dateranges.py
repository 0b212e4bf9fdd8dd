# backend/dateranges.py

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from backend.errors import DateRangeError

HISTORY_FALLBACK_DAYS = 90
DIVIDEND_FALLBACK_DAYS = 365 * 5


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def parse_day(value: str, field: str) -> date:
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        raise DateRangeError(f"Invalid {field} format. Expected YYYY-MM-DD.") from None


def build_date_range(
    start_date: Optional[str],
    end_date: Optional[str],
    fallback_days: int,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """
    Inclusive [start, end] window. The end defaults to today and is clamped to
    it; the start defaults to `fallback_days` before the end.
    """
    today = today or utc_today()

    end = parse_day(end_date, "endDate") if end_date else today
    if end > today:
        end = today

    if start_date:
        start = parse_day(start_date, "startDate")
    else:
        start = end - timedelta(days=fallback_days)

    if start > end:
        raise DateRangeError("Start date must be before end date.")
    return start, end


def span_days(start: date, end: date) -> int:
    """Inclusive day count."""
    return (end - start).days + 1

"""Month names, academic years and deadline dates."""
import calendar
from datetime import date, datetime, time, timezone
from typing import Tuple, Union

from app.core.exceptions import ValidationError

MONTH_NAMES = [calendar.month_name[i] for i in range(1, 13)]


def parse_month(month: Union[str, int]) -> Tuple[str, int]:
    """Normalise "march", "Mar" or 3 to ("March", 3)."""
    if isinstance(month, int) or (isinstance(month, str) and month.strip().isdigit()):
        number = int(month)
        if not 1 <= number <= 12:
            raise ValidationError(f"Month number must be between 1 and 12, got {number}")
        return MONTH_NAMES[number - 1], number

    if not isinstance(month, str) or not month.strip():
        raise ValidationError("Month is required")
    wanted = month.strip().lower()
    for index, name in enumerate(MONTH_NAMES, start=1):
        if name.lower() == wanted or name[:3].lower() == wanted:
            return name, index
    raise ValidationError(f"Invalid month: {month}")


def validate_year(year) -> int:
    try:
        value = int(year)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid year: {year!r}")
    if value < 2020 or value > 2100:
        raise ValidationError(f"Year out of range: {value}")
    return value


def academic_year_for(month_number: int, year: int) -> str:
    """Aug-Jul academic cycle: August 2025 and March 2026 are both "2025-2026"."""
    start = year if month_number >= 8 else year - 1
    return f"{start}-{start + 1}"


def default_deadline(month_number: int, year: int, day: int) -> datetime:
    """End of `day` in the given month, clamped to the month's last day."""
    last_day = calendar.monthrange(year, month_number)[1]
    return datetime.combine(date(year, month_number, min(max(day, 1), last_day)), time(23, 59, 59))


def as_deadline(value: Union[date, datetime]) -> datetime:
    """A bare date means "by the end of that day"."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time(23, 59, 59))
    raise ValidationError("Deadline is required")

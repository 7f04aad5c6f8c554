from datetime import date, datetime, time, timedelta, timezone

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta


def parse_date_string(date_str: str) -> datetime | None:
    """Parse various date formats into a timezone-aware UTC datetime."""
    if not date_str:
        return None
    try:
        dt = date_parser.parse(date_str, fuzzy=True)
    except (ValueError, OverflowError, TypeError):
        return None
    return to_utc(dt)


def to_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def iso_week_window(reference: date) -> tuple[datetime, datetime]:
    """Monday 00:00 to Sunday 23:59:59.999999 (UTC) of the ISO week containing reference."""
    monday = reference - timedelta(days=reference.isoweekday() - 1)
    return start_of_day(monday), end_of_day(monday + timedelta(days=6))


def month_window(month: int, year: int) -> tuple[datetime, datetime]:
    """First instant to last instant (UTC) of a calendar month."""
    first = date(year, month, 1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return start_of_day(first), end_of_day(last)


def previous_month(reference: date) -> tuple[int, int]:
    """(month, year) of the calendar month before reference."""
    prior = reference - relativedelta(months=1)
    return prior.month, prior.year


def print_summary(title: str, stats: dict[str, int]) -> None:
    """Print job processing summary."""
    print(f"\n{'=' * 60}")
    print(f"[{datetime.now(timezone.utc)}] {title} Complete!")
    print(f"{'=' * 60}")
    print(f"✓ Sent:    {stats.get('sent', 0)}")
    print(f"⊘ Skipped: {stats.get('skipped', 0)}")
    print(f"✗ Failed:  {stats.get('failed', 0)}")
    print(f"{'=' * 60}\n")

import datetime
from typing import Iterator
from zoneinfo import ZoneInfo

from rentals.core.config import settings


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Half-open ranges [a_start, a_end) and [b_start, b_end) share at least one instant."""
    return a_start < b_end and a_end > b_start


def nights_between(check_in: datetime.date, check_out: datetime.date) -> int:
    return (check_out - check_in).days


def iter_nights(check_in: datetime.date, check_out: datetime.date) -> Iterator[datetime.date]:
    night = check_in
    while night < check_out:
        yield night
        night += datetime.timedelta(days=1)


def local_today() -> datetime.date:
    return datetime.datetime.now(ZoneInfo(settings.timezone)).date()


def day_start(day: datetime.date) -> datetime.datetime:
    """Naive UTC midnight of a calendar day."""
    return datetime.datetime.combine(day, datetime.time.min)


def to_utc_naive(value) -> datetime.datetime:
    """Normalize a date/datetime (aware or naive) to naive UTC."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc).replace(tzinfo=None)
        return value
    return day_start(value)

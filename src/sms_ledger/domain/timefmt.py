from datetime import date, datetime, time


def format_duration(seconds: float) -> str:
    if seconds <= 0:
        return "0 ms"
    if seconds < 1:
        return f"{seconds * 1000:.1f} ms"
    if seconds < 60:
        return f"{seconds:.2f} s"
    return f"{seconds / 60:.2f} min"


_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d-%b-%Y", "%d-%b-%y", "%d/%m/%y")
_TIME_FORMATS = ("%H:%M", "%H:%M:%S", "%I:%M %p", "%I:%M%p")


def parse_date(value: str | None) -> date | None:
    if not value:
        return None
    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_time(value: str | None) -> time | None:
    if not value:
        return None
    text = value.strip().upper()
    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def combine_occurred_at(fallback: datetime, day: str | None, clock: str | None) -> datetime:
    """Date and time reported in a message, falling back to the receipt timestamp."""
    parsed_day = parse_date(day)
    parsed_clock = parse_time(clock)
    if parsed_day is None and parsed_clock is None:
        return fallback
    return datetime.combine(
        parsed_day or fallback.date(),
        parsed_clock or fallback.time(),
    )


def as_local_naive(value: datetime) -> datetime:
    """Aware timestamps become naive local time, comparable with ``datetime.now()``."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)

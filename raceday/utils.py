from __future__ import annotations

from datetime import date, datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Return an aware UTC datetime; naive values are taken to be UTC already.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns, so everything read from the store goes through here.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    delta = as_utc(end) - as_utc(start)
    return (delta.days * 86_400_000) + (delta.seconds * 1000) + (delta.microseconds // 1000)


def format_elapsed(ms: int | None) -> str:
    if ms is None:
        return ""
    sign = "-" if ms < 0 else ""
    total = abs(int(ms)) // 1000
    hours = total // 3600
    minutes = (total % 3600) // 60
    seconds = total % 60
    return f"{sign}{hours}:{minutes:02d}:{seconds:02d}"


def parse_comma_list(value: str) -> list[str]:
    return [item.strip() for item in value.replace(" ", ",").split(",") if item.strip()]


def parse_bib_list(value: str) -> list[int]:
    """Parse operator input like ``"12, 13 14"`` into bib numbers.

    Raises ``ValueError`` naming the first token that is not a bib number.
    """
    bibs: list[int] = []
    for token in parse_comma_list(value):
        if not token.isdigit():
            raise ValueError(f"Invalid bib number '{token}'")
        bibs.append(int(token))
    return bibs


def classify_race_status(race_date: date, today: date, started: bool = False) -> str:
    if started:
        return "started"
    if race_date < today:
        return "past"
    if race_date > today:
        return "future"
    return "today"

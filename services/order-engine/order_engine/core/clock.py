"""
Order Engine — Clock

Timestamps and the order-number business day come from an injectable clock
so tests can pin "today".
"""
from datetime import date, datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant; `advance` moves it forward."""

    def __init__(self, at: datetime):
        self._at = at

    def now(self) -> datetime:
        return self._at

    def advance(self, delta) -> None:
        self._at = self._at + delta


def business_date(now: datetime, tz_name: str) -> date:
    """Calendar day of `now` in the outlet's timezone."""
    return now.astimezone(ZoneInfo(tz_name)).date()


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp. A trailing 'Z' is accepted; naive values
    are rejected because a catering date without an offset is ambiguous.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp {value!r} has no UTC offset")
    return parsed

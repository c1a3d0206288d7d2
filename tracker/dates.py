"""
Date parsing and the date-range filter applied at every level of the
site -> page -> version hierarchy.

The filter dispatches over an explicit variant instead of probing objects:
a bare timestamp, an entity with its own `date`, or an entity that only
exposes a "last change" timestamp.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from tracker.errors import ConfigurationError


def ensure_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """
    Best-effort parse of a timestamp coming from the remote source or a
    metadata file. Returns None when the value is missing or unreadable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def parse_date_bound(value, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse an `after`/`before` configuration value.

    Accepts an ISO-8601 timestamp or a number of hours relative to `now`
    ("24" means 24 hours ago). Raises ConfigurationError otherwise.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid date bound: {value!r}")

    now = ensure_utc(now or datetime.now(timezone.utc))
    if isinstance(value, (int, float)):
        return _hours_before(now, value)

    text = str(value).strip()
    if not text:
        return None
    try:
        hours = float(text)
    except ValueError:
        parsed = parse_timestamp(text)
        if parsed is None:
            raise ConfigurationError(f"Invalid date bound: {value!r}")
        return parsed
    return _hours_before(now, hours)


def _hours_before(now: datetime, hours: float) -> datetime:
    try:
        return now - timedelta(hours=hours)
    except (OverflowError, ValueError):
        raise ConfigurationError(f"Invalid relative date bound: {hours!r} hours")


# --- Filter subjects ---

@dataclass(frozen=True)
class RawTimestamp:
    value: datetime


@dataclass(frozen=True)
class DatedEntity:
    date: Optional[datetime]


@dataclass(frozen=True)
class LastChangeEntity:
    last_change: Optional[datetime]


DateSubject = Union[RawTimestamp, DatedEntity, LastChangeEntity]


@dataclass(frozen=True)
class DateRange:
    """
    Half-open range [after, before). Either bound may be omitted.
    Subjects without a date pass through.
    """
    after: Optional[datetime] = None
    before: Optional[datetime] = None

    def __post_init__(self):
        if self.after is not None:
            object.__setattr__(self, "after", ensure_utc(self.after))
        if self.before is not None:
            object.__setattr__(self, "before", ensure_utc(self.before))

    def contains(self, moment: datetime) -> bool:
        moment = ensure_utc(moment)
        if self.after is not None and moment < self.after:
            return False
        if self.before is not None and moment >= self.before:
            return False
        return True

    def accepts(self, subject: DateSubject) -> bool:
        if isinstance(subject, RawTimestamp):
            moment = subject.value
        elif isinstance(subject, DatedEntity):
            moment = subject.date
        elif isinstance(subject, LastChangeEntity):
            moment = subject.last_change
        else:
            raise TypeError(f"Unsupported date filter subject: {type(subject).__name__}")

        if moment is None:
            return True
        return self.contains(moment)

    def describe(self) -> str:
        after = self.after.isoformat() if self.after else "-inf"
        before = self.before.isoformat() if self.before else "+inf"
        return f"[{after}, {before})"

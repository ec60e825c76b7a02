"""
core/dates.py
---------------

Date normalisation and window fingerprinting.

Window boundaries reach the cache as ``datetime``/``date`` objects,
ISO-8601 strings or epoch numbers (milliseconds, the convention of the
point-of-sale backend).  Everything is normalised to an aware UTC
``datetime`` before it is compared or hashed, so two windows built from
different representations of the same instants share one cache key.
Naive values are read in the process's local timezone.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def to_datetime(value: Any) -> datetime:
    """Normalise ``value`` to an aware UTC ``datetime``.

    Parameters
    ----------
    value : datetime | date | str | int | float
        A native date value, an ISO-8601 string (``Z`` suffix accepted)
        or epoch milliseconds.

    Raises
    ------
    ValueError
        If a string cannot be parsed or the instant is out of range.
    TypeError
        If the value has an unsupported type.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, bool):
        raise TypeError(f"Unsupported date value: {value!r}")
    elif isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    elif isinstance(value, str):
        parsed = _parse_string(value)
    else:
        raise TypeError(f"Unsupported date value: {value!r}")
    try:
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
        return parsed.astimezone(timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Date out of range: {value!r}") from exc


def _from_epoch_ms(value: float) -> datetime:
    try:
        return EPOCH + timedelta(milliseconds=value)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Epoch milliseconds out of range: {value!r}") from exc


def _parse_string(value: str) -> datetime:
    text = value.strip()
    if not text:
        raise ValueError("Empty date string")
    # epoch milliseconds sent as text
    if text.lstrip("-").replace(".", "", 1).isdigit():
        return _from_epoch_ms(float(text))
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"Unrecognised date string: {value!r}") from None


def to_epoch_ms(value: Any) -> int:
    """Return the epoch milliseconds of any supported date value."""
    return (to_datetime(value) - EPOCH) // _ONE_MS


def fingerprint(window: Any) -> str:
    """Stable cache key for a window.

    ``window`` is anything with ``start``/``end`` attributes or keys.
    The key is ``"<start_ms>-<end_ms>"`` computed after normalisation.
    """
    if isinstance(window, dict):
        start, end = window["start"], window["end"]
    else:
        start, end = window.start, window.end
    return f"{to_epoch_ms(start)}-{to_epoch_ms(end)}"


def _local_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now().astimezone()
    return now.astimezone()


def _day_bounds(start_day: datetime, end_day: datetime) -> Tuple[datetime, datetime]:
    start = start_day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = end_day.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


def today_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Local midnight to 23:59:59.999 of the current day."""
    local = _local_now(now)
    return _day_bounds(local, local)


def last_days_bounds(days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """From local midnight ``days`` days ago to the end of today."""
    local = _local_now(now)
    return _day_bounds(local - timedelta(days=days), local)


def year_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """January 1st to December 31st of the current local year."""
    local = _local_now(now)
    return _day_bounds(local.replace(month=1, day=1), local.replace(month=12, day=31))


def to_query_dates(window: Any) -> Tuple[str, str]:
    """``(YYYY-MM-DD, YYYY-MM-DD)`` local calendar dates for backend query strings."""
    start = to_datetime(window.start).astimezone().date()
    end = to_datetime(window.end).astimezone().date()
    return start.isoformat(), end.isoformat()

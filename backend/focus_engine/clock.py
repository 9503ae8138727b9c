"""
Duration clock: elapsed-time arithmetic and display formatting.
Everything here floors; nothing rounds up, so rewards derived from
displayed values can never be over-credited.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]

_ONE_SECOND = timedelta(seconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def elapsed_seconds(start: Optional[datetime], end: Optional[datetime]) -> int:
    """Whole seconds from start to end, never negative."""
    if start is None or end is None:
        return 0
    return max(0, (as_utc(end) - as_utc(start)) // _ONE_SECOND)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _whole(seconds) -> int:
    return max(0, math.floor(seconds))


def format_progressive(seconds) -> str:
    """H:MM:SS from one hour, MM:SS from one minute, SS below that."""
    hours, rest = divmod(_whole(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    if minutes:
        return f"{minutes:02d}:{secs:02d}"
    return f"{secs:02d}"


def format_human(seconds) -> str:
    """'1h 1m 1s', '2d 1h', '0s'. Seconds are dropped once a day is reached."""
    total = _whole(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs and not days:
        parts.append(f"{secs}s")
    return " ".join(parts) if parts else "0s"


def format_compact(seconds) -> str:
    """At most two units: '45s', '25m', '1h 30m', '2d 1h'."""
    total = _whole(seconds)
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m"
    if total < 86400:
        hours, rest = divmod(total, 3600)
        minutes = rest // 60
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days, rest = divmod(total, 86400)
    hours = rest // 3600
    return f"{days}d {hours}h" if hours else f"{days}d"

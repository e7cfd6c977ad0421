"""
Duration Utilities — Punishment Time Parsing and Formatting

THIS MODULE DEFINES NO COMMANDS.

Provides reusable helpers for:
- Reading wall-clock time as epoch seconds
- Parsing admin duration tokens ("2h", "30m", "5")
- Formatting remaining time for replies
- Rendering audit log timestamps
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional

__all__ = [
    "DEFAULT_PUNISHMENT_SECONDS",
    "now",
    "parse_duration",
    "format_duration",
    "utc_timestamp",
]

DEFAULT_PUNISHMENT_SECONDS = 3600

_AUDIT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def now() -> float:
    """Return the current wall-clock time in epoch seconds."""
    return time.time()


def _parse_int(text: str) -> Optional[int]:
    try:
        return int(text)
    except ValueError:
        return None


def parse_duration(token: Optional[str], default: int = DEFAULT_PUNISHMENT_SECONDS) -> int:
    """
    Resolve a duration token to seconds.

    "2h" is hours and "30m" is minutes. A bare integer is also read as
    minutes. Empty or unparsable tokens resolve to ``default``.
    """
    if not token:
        return default
    token = token.strip().lower()

    if token.endswith("h"):
        hours = _parse_int(token.rstrip("h"))
        if hours is not None:
            return hours * 3600
    if token.endswith("m"):
        minutes = _parse_int(token.rstrip("m"))
        if minutes is not None:
            return minutes * 60

    bare = _parse_int(token)
    if bare is not None:
        return bare * 60
    return default


def format_duration(seconds: float) -> str:
    """Render seconds as "1h 5m" or "4m 10s"; non-positive values are "expired"."""
    seconds = int(seconds)
    if seconds <= 0:
        return "expired"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours >= 1:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"


def utc_timestamp(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime(_AUDIT_TIMESTAMP_FORMAT)

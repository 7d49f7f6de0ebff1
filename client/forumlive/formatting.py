"""Display helpers shared by the room view and the typing indicator."""
from datetime import datetime, timezone
from typing import List, Optional, Union

JUST_NOW = "Just now"


def _parse_timestamp(timestamp: Union[str, float, int, None]) -> Optional[datetime]:
    if timestamp is None or timestamp == "":
        return None
    if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        # Epoch milliseconds, as produced by Date.now() on the server.
        try:
            return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(timestamp, str):
        try:
            parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def format_time(
    timestamp: Union[str, float, int, None],
    now: Optional[datetime] = None,
) -> str:
    """Relative time of a message: ``Just now``, ``5m ago``, ``3h ago`` or a date.

    Args:
        timestamp: ISO-8601 string or epoch milliseconds.
        now: Reference time (defaults to the current UTC time).

    Returns:
        ``Just now`` for missing or unparsable timestamps and anything under a
        minute old; otherwise minutes, hours, or ``YYYY-MM-DD`` past a day.
    """
    date = _parse_timestamp(timestamp)
    if date is None:
        return JUST_NOW

    now = now or datetime.now(timezone.utc)
    diff = (now - date).total_seconds()

    if diff < 60:
        return JUST_NOW
    if diff < 3600:
        return f"{int(diff // 60)}m ago"
    if diff < 86400:
        return f"{int(diff // 3600)}h ago"
    return date.date().isoformat()


def typing_sentence(names: List[str]) -> str:
    """Human-readable typing indicator for the given display names."""
    if not names:
        return ""
    if len(names) == 1:
        return f"{names[0]} is typing..."
    if len(names) == 2:
        return f"{names[0]} and {names[1]} are typing..."
    return f"{names[0]} and {len(names) - 1} others are typing..."

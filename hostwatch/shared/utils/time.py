from datetime import datetime, timezone
import time


def get_current_timestamp() -> int:
    """Get current time as millisecond timestamp"""
    return int(time.time() * 1000)

def from_timestamp(timestamp: int) -> datetime:
    """Convert millisecond timestamp to UTC datetime"""
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)

def monotonic() -> float:
    """Monotonic clock in seconds, for measuring elapsed intervals"""
    return time.monotonic()

def format_duration(seconds: float) -> str:
    """
    Format a duration as a compact human string.

    Examples:
        - 59 → '59s'
        - 3725 → '1h 2m'
        - 190000 → '2d 4h'
    """
    seconds = max(0, int(seconds))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"

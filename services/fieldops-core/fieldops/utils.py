import time
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC now helper to avoid naive datetimes."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def time_of_day(hour: int | None = None) -> str:
    if hour is None:
        hour = datetime.now().hour
    return "night" if hour > 18 or hour < 6 else "day"

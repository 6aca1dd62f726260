"""
Microsecond timestamp helpers shared across components.

All timestamps are integer microseconds since the Unix epoch and calendar
fields are derived in local time.
"""

import itertools
import time
from datetime import datetime
from typing import Optional


MICROS_PER_SECOND = 1_000_000
MICROS_PER_MINUTE = 60 * MICROS_PER_SECOND
MICROS_PER_HOUR = 60 * MICROS_PER_MINUTE


def now_us() -> int:
    """Current wall-clock time in microseconds."""
    return time.time_ns() // 1000


def to_datetime(timestamp_us: int) -> datetime:
    return datetime.fromtimestamp(timestamp_us / MICROS_PER_SECOND)


def from_datetime(value: datetime) -> int:
    return int(value.timestamp() * MICROS_PER_SECOND)


def hour_of_day(timestamp_us: int) -> int:
    return to_datetime(timestamp_us).hour


def time_of_day_seconds(timestamp_us: int) -> int:
    """Seconds elapsed since local midnight."""
    dt = to_datetime(timestamp_us)
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def day_of_week(timestamp_us: int) -> int:
    """Day of week with Sunday as 0."""
    return (to_datetime(timestamp_us).weekday() + 1) % 7


def is_time_in_range(time_of_day: int, start: int, end: int) -> bool:
    """Inclusive range check that also handles ranges crossing midnight."""
    if start <= end:
        return start <= time_of_day <= end
    return time_of_day >= start or time_of_day <= end


def format_timestamp(timestamp_us: int) -> str:
    """Format as local 'YYYY-mm-dd HH:MM:SS.mmm'."""
    dt = to_datetime(timestamp_us)
    millis = (timestamp_us % MICROS_PER_SECOND) // 1000
    return f"{dt.strftime('%Y-%m-%d %H:%M:%S')}.{millis:03d}"


_sequence = itertools.count(1000)


def generate_id(prefix: str, timestamp_us: Optional[int] = None) -> str:
    """Generate an id of the form PREFIX-<millis>-<sequence>."""
    millis = (timestamp_us if timestamp_us is not None else now_us()) // 1000
    return f"{prefix}-{millis}-{next(_sequence)}"

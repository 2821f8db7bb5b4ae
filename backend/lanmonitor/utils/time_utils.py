"""Epoch-millisecond helpers."""
import time
from datetime import datetime


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def local_datetime_str(ts_ms: int) -> str:
    """Render epoch ms as local time, e.g. '2025-09-01 13:45:00'."""
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")

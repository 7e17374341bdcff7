"""Date-range chunking into contiguous, non-overlapping windows.

Every window has an exclusive end, so the end of one window is the start of
the next and no day (or order) can fall into two windows.
"""
import calendar
from datetime import date, timedelta

from ..schemas.metrics import DateWindow


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def split_date_range(start: date, end: date, days: int) -> list[DateWindow]:
    """Split the inclusive date range [start, end] into ``days``-long windows.

    Args:
        start: First date (inclusive)
        end: Last date (inclusive)
        days: Window length in days

    Returns:
        Windows in chronological order; the last may be shorter
    """
    if days < 1:
        raise ValueError("days must be >= 1")
    if start > end:
        raise ValueError(f"start {start} is after end {end}")

    final_end = end + timedelta(days=1)
    windows = []
    current = start
    while current < final_end:
        window_end = min(current + timedelta(days=days), final_end)
        windows.append(DateWindow(start=current, end=window_end))
        current = window_end
    return windows


def split_by_months(start: date, end: date, months: int) -> list[DateWindow]:
    """Split the inclusive date range [start, end] into calendar-month steps."""
    if months < 1:
        raise ValueError("months must be >= 1")
    if start > end:
        raise ValueError(f"start {start} is after end {end}")

    final_end = end + timedelta(days=1)
    windows = []
    current = start
    step = 1
    while current < final_end:
        # Step from the range start so month-end clamping does not drift
        window_end = min(_add_months(start, months * step), final_end)
        windows.append(DateWindow(start=current, end=window_end))
        current = window_end
        step += 1
    return windows


def split_window(window: DateWindow, days: int) -> list[DateWindow]:
    """Subdivide a half-open window into ``days``-long half-open windows."""
    return split_date_range(window.start, window.last_day, days)

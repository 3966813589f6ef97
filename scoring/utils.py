"""
Scoring utility functions.
Workday counting, the per-workday average and top-N ranking used by scoring.metrics.
"""
from datetime import timedelta
from typing import Callable, List, TypeVar

T = TypeVar('T')

DEFAULT_TOP_N = 10
HOURS_PER_DAY = 24
DAYS_PER_WEEK = 7


def count_workdays(since, until) -> int:
    """
    Count Monday-Friday days between since and until, both inclusive.

    since/until may be dates or datetimes (of the same kind); stepping is one calendar day.
    Returns 0 when since is after until.
    """
    workdays = 0
    current = since
    while current <= until:
        # date.weekday(): Monday == 0 .. Sunday == 6
        if current.weekday() < 5:
            workdays += 1
        current = current + timedelta(days=1)
    return workdays


def average_per_workday(total: int, workdays: int) -> float:
    return total / workdays if workdays > 0 else 0


def rank_top(items: List[T], key: Callable[[T], int], top_n: int = DEFAULT_TOP_N) -> List[T]:
    """
    Sort items descending by key and keep the first top_n.
    The sort is stable, so equal keys keep their input order.
    """
    return sorted(items, key=key, reverse=True)[:top_n]


def sunday_first_weekday(weekday: int) -> int:
    """Convert Python's Monday=0 weekday into the dashboard's Sunday=0 index."""
    return (weekday + 1) % DAYS_PER_WEEK

"""Calendar helpers: weekends, federal holidays, and interval timestamps."""

import calendar
from datetime import date, timedelta
from functools import lru_cache

import numpy as np
import pandas as pd

MONDAY = 0
THURSDAY = 3


def nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    """Return the n-th occurrence of a weekday in a month (n=-1 for the last)."""
    if n > 0:
        first = date(year, month, 1)
        offset = (weekday - first.weekday()) % 7
        return first + timedelta(days=offset + 7 * (n - 1))
    last = date(year, month, calendar.monthrange(year, month)[1])
    offset = (last.weekday() - weekday) % 7
    return last - timedelta(days=offset)


@lru_cache(maxsize=None)
def holiday_dates(year: int) -> frozenset[date]:
    """Federal holidays observed by utility tariffs for a given year.

    Fixed-date holidays are flagged on the date itself; no weekend observance
    shift is applied.

    Args:
        year: Calendar year

    Returns:
        Frozen set of holiday dates
    """
    return frozenset(
        {
            date(year, 1, 1),  # New Year's Day
            nth_weekday(year, 2, MONDAY, 3),  # Presidents' Day
            nth_weekday(year, 5, MONDAY, -1),  # Memorial Day
            date(year, 7, 4),  # Independence Day
            nth_weekday(year, 9, MONDAY, 1),  # Labor Day
            date(year, 11, 11),  # Veterans Day
            nth_weekday(year, 11, THURSDAY, 4),  # Thanksgiving
            date(year, 12, 25),  # Christmas Day
        }
    )


def is_holiday(day: date) -> bool:
    """Check whether a date is a federal holiday."""
    return day in holiday_dates(day.year)


def is_weekend(day: date) -> bool:
    """Check whether a date falls on Saturday or Sunday."""
    return day.weekday() >= 5


def weekend_mask(timestamps: pd.DatetimeIndex) -> np.ndarray:
    """Boolean array flagging weekend timestamps."""
    return np.asarray(timestamps.dayofweek >= 5)


def holiday_mask(timestamps: pd.DatetimeIndex) -> np.ndarray:
    """Boolean array flagging timestamps that fall on a federal holiday."""
    days = timestamps.normalize()
    holidays = set()
    for year in np.unique(timestamps.year):
        holidays |= {pd.Timestamp(d) for d in holiday_dates(int(year))}
    return np.asarray(days.isin(list(holidays)))


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def days_in_year(year: int) -> int:
    return 366 if calendar.isleap(year) else 365


def year_timestamps(year: int, interval_minutes: int) -> pd.DatetimeIndex:
    """All interval start times of a calendar year."""
    return pd.date_range(
        start=pd.Timestamp(year=year, month=1, day=1),
        end=pd.Timestamp(year=year + 1, month=1, day=1),
        freq=f"{interval_minutes}min",
        inclusive="left",
        name="timestamp",
    )

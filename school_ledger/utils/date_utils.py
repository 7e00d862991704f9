"""Date manipulation utilities"""

import calendar
from datetime import date, timedelta
from typing import Tuple


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a calendar month (inclusive)"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def year_bounds(year: int) -> Tuple[date, date]:
    """First and last day of a calendar year (inclusive)"""
    return date(year, 1, 1), date(year, 12, 31)


def add_days(from_date: date, days: int) -> date:
    return from_date + timedelta(days=days)

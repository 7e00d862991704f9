"""Budget reconciliation rules - period windows and status classification"""

from datetime import date
from typing import Optional, Tuple
from school_ledger.domain.exceptions import ValidationError
from school_ledger.domain.models import BudgetFigures, BudgetPeriod, BudgetStatus
from school_ledger.utils.date_utils import month_bounds, year_bounds


def normalize_period(period_type: str, year: int, month: Optional[int]) -> Tuple[BudgetPeriod, int, Optional[int]]:
    """
    Validate a budget period key.

    Monthly budgets need a month in 1..12; yearly budgets never carry one
    (any month passed in is dropped so the key stays unique).
    """
    try:
        period = BudgetPeriod(period_type)
    except ValueError:
        raise ValidationError(f"Unknown budget period: {period_type}")

    if year < 1900 or year > 9999:
        raise ValidationError("Year is out of range")

    if period == BudgetPeriod.MONTHLY:
        if month is None or not 1 <= month <= 12:
            raise ValidationError("Monthly budgets need a month between 1 and 12")
        return period, year, month

    return period, year, None


def period_window(period: BudgetPeriod, year: int, month: Optional[int]) -> Tuple[date, date]:
    """Calendar month for monthly budgets, calendar year for yearly ones"""
    if period == BudgetPeriod.MONTHLY:
        return month_bounds(year, month)
    return year_bounds(year)


def evaluate(
    planned_cents: int,
    actual_cents: int,
    warning_percent: float = 80.0,
    exceeded_percent: float = 100.0,
) -> BudgetFigures:
    """
    Compare actual spend against the planned figure.

    percentage = round(actual / planned * 100, 1), or 0 when nothing is planned.
    Status compares the unrounded ratio: exceeded at >= exceeded_percent,
    warning at >= warning_percent, else ok.
    """
    ratio = actual_cents * 100 / planned_cents if planned_cents > 0 else 0.0

    if ratio >= exceeded_percent:
        status = BudgetStatus.EXCEEDED
    elif ratio >= warning_percent:
        status = BudgetStatus.WARNING
    else:
        status = BudgetStatus.OK

    return BudgetFigures(
        planned_cents=planned_cents,
        actual_cents=actual_cents,
        percentage=round(ratio, 1),
        status=status,
    )

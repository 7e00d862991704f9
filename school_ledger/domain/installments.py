"""Installment schedule generation and status rules for student payment plans"""

from datetime import date
from typing import Iterable, List, Sequence
from school_ledger.domain.exceptions import ValidationError
from school_ledger.domain.models import InstallmentStatus, ScheduledInstallment


def split_installments(total_cents: int, due_dates: Sequence[date]) -> List[ScheduledInstallment]:
    """
    Split a plan total into one installment per due date.

    Requirements:
    - Equal split: every installment gets total // len(due_dates)
    - No remainder redistribution; the schedule may sum to slightly less than
      the total (at most len(due_dates)-1 units short)
    - Sequence numbers follow the order the due dates were given in

    Example:
        300000 over 3 dates -> [100000, 100000, 100000]
        100000 over 3 dates -> [33333, 33333, 33333]
    """
    if not due_dates:
        raise ValidationError("At least one due date is required")
    if total_cents <= 0:
        raise ValidationError("Plan total must be greater than zero")

    amount = total_cents // len(due_dates)

    return [
        ScheduledInstallment(sequence=i + 1, due_date=due_date, amount_cents=amount)
        for i, due_date in enumerate(due_dates)
    ]


def status_after_payment(amount_cents: int, paid_cents: int) -> InstallmentStatus:
    """
    Status of an installment once a payment has been applied.

    pending/partial/overdue -> partial while 0 < paid < amount
                            -> paid once paid >= amount
    """
    if paid_cents >= amount_cents:
        return InstallmentStatus.PAID
    if paid_cents > 0:
        return InstallmentStatus.PARTIAL
    return InstallmentStatus.PENDING


def plan_is_complete(statuses: Iterable[InstallmentStatus]) -> bool:
    statuses = list(statuses)
    return bool(statuses) and all(s == InstallmentStatus.PAID for s in statuses)


def remaining_cents(amount_cents: int, paid_cents: int) -> int:
    """Amount still due; negative when the installment was overpaid"""
    return amount_cents - paid_cents


def compose_reminder(
    student_name: str,
    sequence: int,
    plan_name: str,
    amount_due_cents: int,
    due_date: date,
    currency: str,
) -> str:
    """Render the SMS text for an installment reminder"""
    return (
        f"Dear Parent, this is a reminder that {student_name}'s installment #{sequence} "
        f"of {plan_name} ({currency} {amount_due_cents:,}) is due on {due_date.strftime('%d %b %Y')}. "
        "Please ensure payment. Thank you."
    )

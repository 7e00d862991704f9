"""Unit tests for installment schedule generation and status rules"""

import pytest
from datetime import date
from school_ledger.domain.exceptions import ValidationError
from school_ledger.domain.installments import (
    compose_reminder,
    plan_is_complete,
    remaining_cents,
    split_installments,
    status_after_payment,
)
from school_ledger.domain.models import InstallmentStatus


def test_split_installments_equal_split():
    """Test plan with evenly divisible amount"""
    dates = [date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)]
    installments = split_installments(300000, dates)

    assert len(installments) == 3
    assert all(inst.amount_cents == 100000 for inst in installments)
    assert [inst.sequence for inst in installments] == [1, 2, 3]
    assert [inst.due_date for inst in installments] == dates


def test_split_installments_drops_remainder():
    """Remainder is not redistributed; schedule can fall short of the total"""
    installments = split_installments(100000, [date(2024, 2, 1)] * 3)

    assert [inst.amount_cents for inst in installments] == [33333, 33333, 33333]
    assert 100000 - sum(inst.amount_cents for inst in installments) == 1


def test_split_installments_keeps_given_date_order():
    dates = [date(2024, 5, 1), date(2024, 3, 1)]
    installments = split_installments(50000, dates)

    assert installments[0].due_date == date(2024, 5, 1)
    assert installments[0].sequence == 1


def test_split_installments_requires_dates():
    with pytest.raises(ValidationError):
        split_installments(100000, [])


def test_split_installments_requires_positive_total():
    with pytest.raises(ValidationError):
        split_installments(0, [date(2024, 2, 1)])


@pytest.mark.parametrize(
    "amount,paid,expected",
    [
        (100000, 60000, InstallmentStatus.PARTIAL),
        (100000, 100000, InstallmentStatus.PAID),
        (100000, 120000, InstallmentStatus.PAID),
        (100000, 0, InstallmentStatus.PENDING),
    ],
)
def test_status_after_payment(amount, paid, expected):
    assert status_after_payment(amount, paid) == expected


def test_plan_is_complete():
    assert plan_is_complete([InstallmentStatus.PAID, InstallmentStatus.PAID])
    assert not plan_is_complete([InstallmentStatus.PAID, InstallmentStatus.PARTIAL])
    assert not plan_is_complete([])


def test_remaining_is_negative_when_overpaid():
    assert remaining_cents(100000, 40000) == 60000
    assert remaining_cents(100000, 110000) == -10000


def test_compose_reminder():
    text = compose_reminder("Amina Nakato", 2, "Term 1 Plan", 150000, date(2024, 3, 5), "UGX")

    assert text == (
        "Dear Parent, this is a reminder that Amina Nakato's installment #2 of Term 1 Plan "
        "(UGX 150,000) is due on 05 Mar 2024. Please ensure payment. Thank you."
    )

"""Integration tests for budget upsert and reconciliation against expenses"""

import pytest
from datetime import date
from sqlalchemy.orm import sessionmaker
from school_ledger.domain.exceptions import NotFoundError, ValidationError
from school_ledger.domain.models import BudgetStatus, EntryDraft, EntryKind
from school_ledger.infrastructure.database.models import Budget
from school_ledger.services.budgets import BudgetService
from school_ledger.services.ledger import LedgerService


def spend(db, identity, category, amount_cents, entry_date=date(2024, 3, 10)):
    draft = EntryDraft(
        entry_date=entry_date,
        description=f"{category.name} bill",
        amount_cents=amount_cents,
        category_id=category.id,
    )
    return LedgerService(db).create_expense(identity, draft)


def test_upsert_replaces_amount_for_same_period(db, school, admin):
    service = BudgetService(db)
    first = service.upsert_budget(admin, "Utilities", 100000, "monthly", 2024, 3)
    second = service.upsert_budget(admin, "Utilities", 200000, "monthly", 2024, 3)

    assert first.id == second.id
    assert db.query(Budget).count() == 1
    assert db.get(Budget, first.id).amount_cents == 200000


def test_yearly_budget_is_one_row_regardless_of_month(db, school, admin):
    service = BudgetService(db)
    service.upsert_budget(admin, "Utilities", 100000, "yearly", 2024, 3)
    budget = service.upsert_budget(admin, "Utilities", 150000, "yearly", 2024)

    assert budget.month is None
    assert db.query(Budget).count() == 1


def test_yearly_upsert_after_a_stale_lookup_keeps_one_row(db, school, admin):
    """A writer that looked the key up before another committed still lands on the same row"""
    org_id = admin.organization_id
    other = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())()
    try:
        late = BudgetService(other)
        assert late.repo.find(org_id, "Utilities", "yearly", 2024, None) is None

        BudgetService(db).upsert_budget(admin, "Utilities", 200000, "yearly", 2024)

        late.repo.upsert(org_id, "Utilities", "yearly", 2024, None, 250000)
        other.commit()
    finally:
        other.close()

    db.expire_all()
    rows = db.query(Budget).filter(Budget.category == "Utilities").all()
    assert len(rows) == 1
    assert rows[0].amount_cents == 250000
    assert rows[0].month is None


@pytest.mark.parametrize(
    "category,amount,period,month",
    [("", 1000, "monthly", 3), ("Utilities", 0, "monthly", 3), ("Utilities", 1000, "monthly", None)],
)
def test_upsert_validation(db, school, admin, category, amount, period, month):
    with pytest.raises(ValidationError):
        BudgetService(db).upsert_budget(admin, category, amount, period, 2024, month)


def test_category_over_budget(db, school, admin):
    """Utilities budget 200,000 against 210,000 of spend"""
    service = BudgetService(db)
    service.upsert_budget(admin, "Utilities", 200000, "monthly", 2024, 3)
    spend(db, admin, school["utilities"], 120000)
    spend(db, admin, school["utilities"], 90000)

    summary = service.summarize(admin.organization_id, "monthly", 2024, 3, category="Utilities")

    assert summary.figures.actual_cents == 210000
    assert summary.figures.percentage == 105.0
    assert summary.figures.status == BudgetStatus.EXCEEDED


def test_voided_and_out_of_window_expenses_ignored(db, school, admin):
    service = BudgetService(db)
    service.upsert_budget(admin, "Utilities", 200000, "monthly", 2024, 3)
    spend(db, admin, school["utilities"], 150000)
    spend(db, admin, school["utilities"], 50000, entry_date=date(2024, 4, 1))
    voided = spend(db, admin, school["utilities"], 90000)
    LedgerService(db).void_entry(admin, EntryKind.EXPENSE, voided.id, "entered twice")

    summary = service.summarize(admin.organization_id, "monthly", 2024, 3, category="Utilities")

    assert summary.figures.actual_cents == 150000
    assert summary.figures.percentage == 75.0
    assert summary.figures.status == BudgetStatus.OK


def test_period_summary_lists_overruns(db, school, admin):
    service = BudgetService(db)
    service.upsert_budget(admin, "Utilities", 100000, "monthly", 2024, 3)
    service.upsert_budget(admin, "Stationery", 100000, "monthly", 2024, 3)
    spend(db, admin, school["utilities"], 130000)
    spend(db, admin, school["stationery"], 40000)

    summary = service.summarize(admin.organization_id, "monthly", 2024, 3)

    assert summary.category is None
    assert summary.figures.planned_cents == 200000
    assert summary.figures.actual_cents == 170000
    assert summary.figures.status == BudgetStatus.WARNING
    assert [(o.category, o.over_cents) for o in summary.over_budget] == [("Utilities", 30000)]


def test_summary_for_missing_category_budget(db, school, admin):
    with pytest.raises(NotFoundError):
        BudgetService(db).summarize(admin.organization_id, "monthly", 2024, 3, category="Transport")


def test_bulk_upsert_skips_non_positive(db, school, admin):
    saved = BudgetService(db).upsert_budgets(
        admin, [("Utilities", 100000), ("Stationery", 0), ("Transport", 50000)], "monthly", 2024, 5
    )

    assert sorted(b.category for b in saved) == ["Transport", "Utilities"]


def test_list_and_delete(db, school, admin):
    service = BudgetService(db)
    budget = service.upsert_budget(admin, "Utilities", 100000, "monthly", 2024, 3)
    spend(db, admin, school["utilities"], 85000)

    [(listed, figures)] = service.list_budgets(admin.organization_id, 2024, "monthly")
    assert listed.id == budget.id
    assert figures.status == BudgetStatus.WARNING

    service.delete_budget(admin, budget.id)
    assert service.list_budgets(admin.organization_id, 2024) == []
    with pytest.raises(NotFoundError):
        service.delete_budget(admin, budget.id)

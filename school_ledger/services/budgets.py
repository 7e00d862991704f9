"""Budget reconciler: planned spend per category and period against actual expenses"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy.orm import Session
from school_ledger.config import settings
from school_ledger.domain.budgets import evaluate, normalize_period, period_window
from school_ledger.domain.exceptions import NotFoundError, ValidationError
from school_ledger.domain.models import (
    AuditAction,
    BudgetFigures,
    BudgetPeriod,
    BudgetSummary,
    CallerIdentity,
    CategoryOverrun,
)
from school_ledger.infrastructure.database.models import Budget
from school_ledger.infrastructure.database.repositories import BudgetRepository, LedgerRepository
from school_ledger.infrastructure.database.session import unit_of_work
from school_ledger.infrastructure.observability.metrics import budget_evaluation_counter
from school_ledger.services.audit import AuditSink


class BudgetService:
    """Budget reconciler for one database session; actuals are always summed from the ledger"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BudgetRepository(db)
        self.ledger = LedgerRepository(db)

    def _evaluate(self, planned_cents: int, actual_cents: int) -> BudgetFigures:
        figures = evaluate(
            planned_cents,
            actual_cents,
            warning_percent=settings.budget_warning_percent,
            exceeded_percent=settings.budget_exceeded_percent,
        )
        budget_evaluation_counter.labels(status=figures.status.value).inc()
        return figures

    def figures_for(self, budget: Budget) -> BudgetFigures:
        """Derived actual, percentage and status for a stored budget"""
        period, year, month = normalize_period(budget.period_type, budget.year, budget.month)
        start, end = period_window(period, year, month)
        actual = self.ledger.sum_expenses(budget.organization_id, start, end, category=budget.category)
        return self._evaluate(budget.amount_cents, actual)

    def upsert_budget(
        self,
        identity: CallerIdentity,
        category: str,
        amount_cents: int,
        period_type: str,
        year: int,
        month: Optional[int] = None,
    ) -> Budget:
        """Create the budget for this category and period, or replace its planned amount"""
        category = (category or "").strip()
        if not category:
            raise ValidationError("Category is required")
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("Budget amount must be greater than zero")
        period, year, month = normalize_period(period_type, year, month)

        existing = self.repo.find(identity.organization_id, category, period.value, year, month)
        old_amount = existing.amount_cents if existing else None

        with unit_of_work(self.db, "upsert_budget"):
            budget = self.repo.upsert(
                identity.organization_id, category, period.value, year, month, amount_cents, identity.user_id
            )

        AuditSink(self.db).record(
            identity,
            AuditAction.UPDATE if old_amount is not None else AuditAction.CREATE,
            "budget",
            budget.id,
            f"Budget for {category} ({period.value} {year}{'-%02d' % month if month else ''})",
            old_values={"amount_cents": old_amount} if old_amount is not None else None,
            new_values={"amount_cents": amount_cents},
        )
        return budget

    def upsert_budgets(
        self,
        identity: CallerIdentity,
        items: Iterable[Tuple[str, int]],
        period_type: str,
        year: int,
        month: Optional[int] = None,
    ) -> List[Budget]:
        """
        Save several categories for one period in a single transaction.

        Items with a non-positive amount are skipped rather than rejected.
        """
        period, year, month = normalize_period(period_type, year, month)
        items = [(category.strip(), amount) for category, amount in items if category and category.strip()]

        saved = []
        with unit_of_work(self.db, "upsert_budgets"):
            for category, amount_cents in items:
                if amount_cents is None or amount_cents <= 0:
                    continue
                saved.append(
                    self.repo.upsert(
                        identity.organization_id, category, period.value, year, month, amount_cents, identity.user_id
                    )
                )

        AuditSink(self.db).record(
            identity,
            AuditAction.UPDATE,
            "budget",
            None,
            f"Saved {len(saved)} budgets for {period.value} {year}",
            new_values={"categories": [b.category for b in saved]},
        )
        return saved

    def list_budgets(
        self,
        organization_id,
        year: int,
        period_type: Optional[str] = None,
        month: Optional[int] = None,
    ) -> List[Tuple[Budget, BudgetFigures]]:
        if period_type is not None:
            try:
                period_type = BudgetPeriod(period_type).value
            except ValueError:
                raise ValidationError(f"Unknown budget period: {period_type}")
        return [(b, self.figures_for(b)) for b in self.repo.list_for_period(organization_id, year, period_type, month)]

    def delete_budget(self, identity: CallerIdentity, budget_id) -> None:
        budget = self.repo.get(identity.organization_id, budget_id)
        if budget is None:
            raise NotFoundError("Budget not found")
        before: Dict[str, Any] = {"category": budget.category, "amount_cents": budget.amount_cents}

        with unit_of_work(self.db, "delete_budget"):
            self.repo.delete(identity.organization_id, budget_id)

        AuditSink(self.db).record(
            identity, AuditAction.DELETE, "budget", budget_id, f"Deleted budget for {before['category']}", old_values=before
        )

    def summarize(
        self,
        organization_id,
        period_type: str,
        year: int,
        month: Optional[int] = None,
        category: Optional[str] = None,
    ) -> BudgetSummary:
        """
        Reconcile planned against actual spend for a period.

        With a category: that budget's planned figure against the category's
        non-voided expenses in the window (NotFoundError when no budget exists).
        Without one: all budgets for the period against all non-voided
        expenses, plus the categories that went over.
        """
        period, year, month = normalize_period(period_type, year, month)
        start, end = period_window(period, year, month)

        if category:
            budget = self.repo.find(organization_id, category, period.value, year, month)
            if budget is None:
                raise NotFoundError(f"No {period.value} budget for {category}")
            actual = self.ledger.sum_expenses(organization_id, start, end, category=category)
            return BudgetSummary(
                category=category,
                period_type=period,
                year=year,
                month=month,
                figures=self._evaluate(budget.amount_cents, actual),
            )

        budgets = [b for b in self.repo.list_for_period(organization_id, year, period.value) if b.month == month]
        planned = sum(b.amount_cents for b in budgets)
        actual = self.ledger.sum_expenses(organization_id, start, end)

        over_budget = []
        for budget in budgets:
            spent = self.ledger.sum_expenses(organization_id, start, end, category=budget.category)
            if spent > budget.amount_cents:
                over_budget.append(CategoryOverrun(budget.category, budget.amount_cents, spent))

        return BudgetSummary(
            category=None,
            period_type=period,
            year=year,
            month=month,
            figures=self._evaluate(planned, actual),
            over_budget=over_budget,
        )

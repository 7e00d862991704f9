"""/v1/budgets - planned spend and reconciliation against expenses"""

import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.dependencies import require
from school_ledger.api.v1.schemas import (
    BudgetRequest,
    BudgetResponse,
    BudgetSummaryResponse,
    BulkBudgetRequest,
    CategoryOverrunSchema,
    Envelope,
    MessageResponse,
)
from school_ledger.domain.models import BudgetFigures, CallerIdentity
from school_ledger.domain.permissions import Action, Module
from school_ledger.infrastructure.database.models import Budget
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.budgets import BudgetService

router = APIRouter()


def budget_response(budget: Budget, figures: BudgetFigures) -> BudgetResponse:
    return BudgetResponse(
        id=budget.id,
        category=budget.category,
        period_type=budget.period_type,
        year=budget.year,
        month=budget.month,
        amount_cents=budget.amount_cents,
        actual_cents=figures.actual_cents,
        remaining_cents=figures.remaining_cents,
        percentage=figures.percentage,
        status=figures.status,
    )


@router.post("/budgets", response_model=Envelope[BudgetResponse])
def upsert_budget(
    body: BudgetRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.BUDGETS, Action.CREATE)),
):
    """Create or replace the budget for one category and period"""
    service = BudgetService(db)
    budget = service.upsert_budget(
        identity, body.category, body.amount_cents, body.period_type.value, body.year, body.month
    )
    return Envelope(data=budget_response(budget, service.figures_for(budget)))


@router.post("/budgets/bulk", response_model=Envelope[List[BudgetResponse]])
def upsert_budgets(
    body: BulkBudgetRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.BUDGETS, Action.CREATE)),
):
    service = BudgetService(db)
    saved = service.upsert_budgets(
        identity,
        [(item.category, item.amount_cents) for item in body.budgets],
        body.period_type.value,
        body.year,
        body.month,
    )
    return Envelope(data=[budget_response(b, service.figures_for(b)) for b in saved])


@router.get("/budgets", response_model=Envelope[List[BudgetResponse]])
def list_budgets(
    year: int,
    period_type: Optional[str] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.BUDGETS, Action.VIEW)),
):
    rows = BudgetService(db).list_budgets(identity.organization_id, year, period_type, month)
    return Envelope(data=[budget_response(b, f) for b, f in rows])


@router.get("/budgets/summary", response_model=Envelope[BudgetSummaryResponse])
def get_budget_summary(
    year: int,
    period_type: str = "monthly",
    month: Optional[int] = None,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.BUDGETS, Action.VIEW)),
):
    """
    Planned vs actual for a category, or for the whole period when no
    category is given (with the categories that went over budget).
    """
    summary = BudgetService(db).summarize(identity.organization_id, period_type, year, month, category)
    figures = summary.figures
    return Envelope(
        data=BudgetSummaryResponse(
            category=summary.category,
            period_type=summary.period_type,
            year=summary.year,
            month=summary.month,
            planned_cents=figures.planned_cents,
            actual_cents=figures.actual_cents,
            remaining_cents=figures.remaining_cents,
            percentage=figures.percentage,
            status=figures.status,
            over_budget=[
                CategoryOverrunSchema(
                    category=o.category,
                    planned_cents=o.planned_cents,
                    actual_cents=o.actual_cents,
                    over_cents=o.over_cents,
                )
                for o in summary.over_budget
            ],
        )
    )


@router.delete("/budgets/{budget_id}", response_model=Envelope[MessageResponse])
def delete_budget(
    budget_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.BUDGETS, Action.DELETE)),
):
    BudgetService(db).delete_budget(identity, budget_id)
    return Envelope(data=MessageResponse(message="Budget deleted"))

"""/v1/students and /v1/terms - student fee balances and payments"""

import uuid
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.dependencies import require
from school_ledger.api.v1.schemas import (
    BalanceResponse,
    CarryForwardRequest,
    Envelope,
    IncomeResponse,
    StudentPaymentRequest,
    TotalFeesRequest,
)
from school_ledger.domain.models import BalanceView, CallerIdentity, EntryDraft
from school_ledger.domain.permissions import Action, Module
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.balances import BalanceService
from school_ledger.services.ledger import LedgerService

router = APIRouter()


def to_response(view: BalanceView) -> BalanceResponse:
    return BalanceResponse(
        student_id=view.student_id,
        term_id=view.term_id,
        total_fees_cents=view.total_fees_cents,
        amount_paid_cents=view.amount_paid_cents,
        previous_balance_cents=view.previous_balance_cents,
        outstanding_cents=view.outstanding_cents,
    )


@router.get("/students/{student_id}/balance", response_model=Envelope[BalanceResponse])
def get_student_balance(
    student_id: uuid.UUID,
    term_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.STUDENTS, Action.VIEW)),
):
    view = BalanceService(db).get_balance(identity.organization_id, student_id, term_id)
    return Envelope(data=to_response(view))


@router.post("/students/{student_id}/payments", response_model=Envelope[IncomeResponse], status_code=201)
def record_student_payment(
    student_id: uuid.UUID,
    body: StudentPaymentRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.STUDENTS, Action.CREATE)),
):
    """Record a fee payment: receipt, income entry and balance credit in one transaction"""
    draft = EntryDraft(
        entry_date=body.entry_date,
        description=body.description,
        amount_cents=body.amount_cents,
        category_id=body.category_id,
        payment_method=body.payment_method.value,
        reference=body.reference,
        notes=body.notes,
    )
    entry = LedgerService(db).record_student_payment(identity, student_id, body.term_id, draft)
    return Envelope(data=IncomeResponse.model_validate(entry))


@router.put("/students/{student_id}/fees", response_model=Envelope[BalanceResponse])
def set_total_fees(
    student_id: uuid.UUID,
    body: TotalFeesRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.STUDENTS, Action.EDIT)),
):
    view = BalanceService(db).set_total_fees(identity, student_id, body.term_id, body.total_fees_cents)
    return Envelope(data=to_response(view))


@router.post("/students/{student_id}/carry-forward", response_model=Envelope[BalanceResponse])
def carry_forward(
    student_id: uuid.UUID,
    body: CarryForwardRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.STUDENTS, Action.EDIT)),
):
    view = BalanceService(db).carry_forward(identity, student_id, body.from_term_id, body.to_term_id)
    return Envelope(data=to_response(view))


@router.get("/terms/{term_id}/balances", response_model=Envelope[List[BalanceResponse]])
def list_term_balances(
    term_id: uuid.UUID,
    outstanding_only: bool = False,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.STUDENTS, Action.VIEW)),
):
    views = BalanceService(db).list_term_balances(identity.organization_id, term_id, outstanding_only)
    return Envelope(data=[to_response(v) for v in views])

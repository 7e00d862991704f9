"""/v1/income - fee and other income records"""

import uuid
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.dependencies import require
from school_ledger.api.v1.schemas import (
    EntryUpdateRequest,
    Envelope,
    IncomeCreateRequest,
    IncomeResponse,
    Page,
    VoidRequest,
)
from school_ledger.domain.models import CallerIdentity, EntryChanges, EntryDraft, EntryKind
from school_ledger.domain.permissions import Action, Module
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.ledger import LedgerService

router = APIRouter()


@router.post("/income", response_model=Envelope[IncomeResponse], status_code=201)
def create_income(
    body: IncomeCreateRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.INCOME, Action.CREATE)),
):
    """
    Record income and issue its receipt number.

    When both student_id and term_id are given the entry is a fee payment
    and the student's term balance is credited in the same transaction.
    """
    draft = EntryDraft(
        entry_date=body.entry_date,
        description=body.description,
        amount_cents=body.amount_cents,
        category_id=body.category_id,
        payment_method=body.payment_method.value,
        student_id=body.student_id,
        term_id=body.term_id,
        reference=body.reference,
        notes=body.notes,
    )
    entry = LedgerService(db).create_income(identity, draft)
    return Envelope(data=IncomeResponse.model_validate(entry))


@router.get("/income", response_model=Envelope[Page[IncomeResponse]])
def list_income(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[uuid.UUID] = None,
    student_id: Optional[uuid.UUID] = None,
    payment_method: Optional[str] = None,
    include_voided: bool = False,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.INCOME, Action.VIEW)),
):
    items, total = LedgerService(db).list_entries(
        identity.organization_id,
        EntryKind.INCOME,
        start=start_date,
        end=end_date,
        category_id=category_id,
        student_id=student_id,
        payment_method=payment_method,
        include_voided=include_voided,
        page=page,
        limit=limit,
    )
    return Envelope(
        data=Page(items=[IncomeResponse.model_validate(e) for e in items], total=total, page=page, limit=limit)
    )


@router.get("/income/{entry_id}", response_model=Envelope[IncomeResponse])
def get_income(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.INCOME, Action.VIEW)),
):
    entry = LedgerService(db).get_entry(identity.organization_id, EntryKind.INCOME, entry_id)
    return Envelope(data=IncomeResponse.model_validate(entry))


@router.put("/income/{entry_id}", response_model=Envelope[IncomeResponse])
def amend_income(
    entry_id: uuid.UUID,
    body: EntryUpdateRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.INCOME, Action.EDIT)),
):
    changes = EntryChanges(**body.model_dump(exclude_none=True, exclude={"vendor"}))
    entry = LedgerService(db).amend_entry(identity, EntryKind.INCOME, entry_id, changes)
    return Envelope(data=IncomeResponse.model_validate(entry))


@router.post("/income/{entry_id}/void", response_model=Envelope[IncomeResponse])
def void_income(
    entry_id: uuid.UUID,
    body: VoidRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.INCOME, Action.VOID)),
):
    """Void (soft-reverse) an income record; fee payments are taken off the student's balance"""
    entry = LedgerService(db).void_entry(identity, EntryKind.INCOME, entry_id, body.reason)
    return Envelope(data=IncomeResponse.model_validate(entry))

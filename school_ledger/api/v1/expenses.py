"""/v1/expenses - school spending records"""

import uuid
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.dependencies import require
from school_ledger.api.v1.schemas import (
    EntryUpdateRequest,
    Envelope,
    ExpenseCreateRequest,
    ExpenseResponse,
    Page,
    VoidRequest,
)
from school_ledger.domain.models import CallerIdentity, EntryChanges, EntryDraft, EntryKind
from school_ledger.domain.permissions import Action, Module
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.ledger import LedgerService

router = APIRouter()


@router.post("/expenses", response_model=Envelope[ExpenseResponse], status_code=201)
def create_expense(
    body: ExpenseCreateRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.EXPENSES, Action.CREATE)),
):
    draft = EntryDraft(
        entry_date=body.entry_date,
        description=body.description,
        amount_cents=body.amount_cents,
        category_id=body.category_id,
        payment_method=body.payment_method.value if body.payment_method else None,
        vendor=body.vendor,
        reference=body.reference,
        notes=body.notes,
    )
    entry = LedgerService(db).create_expense(identity, draft)
    return Envelope(data=ExpenseResponse.model_validate(entry))


@router.get("/expenses", response_model=Envelope[Page[ExpenseResponse]])
def list_expenses(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[uuid.UUID] = None,
    payment_method: Optional[str] = None,
    include_voided: bool = False,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.EXPENSES, Action.VIEW)),
):
    items, total = LedgerService(db).list_entries(
        identity.organization_id,
        EntryKind.EXPENSE,
        start=start_date,
        end=end_date,
        category_id=category_id,
        payment_method=payment_method,
        include_voided=include_voided,
        page=page,
        limit=limit,
    )
    return Envelope(
        data=Page(items=[ExpenseResponse.model_validate(e) for e in items], total=total, page=page, limit=limit)
    )


@router.get("/expenses/{entry_id}", response_model=Envelope[ExpenseResponse])
def get_expense(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.EXPENSES, Action.VIEW)),
):
    entry = LedgerService(db).get_entry(identity.organization_id, EntryKind.EXPENSE, entry_id)
    return Envelope(data=ExpenseResponse.model_validate(entry))


@router.put("/expenses/{entry_id}", response_model=Envelope[ExpenseResponse])
def amend_expense(
    entry_id: uuid.UUID,
    body: EntryUpdateRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.EXPENSES, Action.EDIT)),
):
    changes = EntryChanges(**body.model_dump(exclude_none=True))
    entry = LedgerService(db).amend_entry(identity, EntryKind.EXPENSE, entry_id, changes)
    return Envelope(data=ExpenseResponse.model_validate(entry))


@router.post("/expenses/{entry_id}/void", response_model=Envelope[ExpenseResponse])
def void_expense(
    entry_id: uuid.UUID,
    body: VoidRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.EXPENSES, Action.VOID)),
):
    entry = LedgerService(db).void_entry(identity, EntryKind.EXPENSE, entry_id, body.reason)
    return Envelope(data=ExpenseResponse.model_validate(entry))

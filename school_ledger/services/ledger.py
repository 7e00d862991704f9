"""Income and expense ledger: recording, amendment, voiding and receipt lookup"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from school_ledger.config import settings
from school_ledger.domain.exceptions import AlreadyVoidedError, NotFoundError, ValidationError
from school_ledger.domain.ledger import validate_changes, validate_draft, validate_void_reason
from school_ledger.domain.models import AuditAction, CallerIdentity, EntryChanges, EntryDraft, EntryKind
from school_ledger.domain.receipts import format_receipt_code
from school_ledger.infrastructure.database.models import ExpenseEntry, IncomeEntry
from school_ledger.infrastructure.database.repositories import (
    LedgerRepository,
    ReceiptCounterRepository,
    ReferenceRepository,
)
from school_ledger.infrastructure.database.session import unit_of_work
from school_ledger.infrastructure.observability.logging import log_ledger_event
from school_ledger.infrastructure.observability.metrics import ledger_void_counter, record_entry
from school_ledger.services.audit import AuditSink, snapshot
from school_ledger.services.balances import BalanceService

logger = logging.getLogger(__name__)

COMMON_FIELDS = ["entry_date", "description", "amount_cents", "category_id", "payment_method", "reference", "notes"]
AUDIT_FIELDS = {
    EntryKind.INCOME: COMMON_FIELDS + ["receipt_code", "student_id", "term_id"],
    EntryKind.EXPENSE: COMMON_FIELDS + ["vendor"],
}
ENTRY_MODELS = {EntryKind.INCOME: IncomeEntry, EntryKind.EXPENSE: ExpenseEntry}
ENTITY_TYPES = {EntryKind.INCOME: "income", EntryKind.EXPENSE: "expense"}


class LedgerService:
    """Ledger store for one database session"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = LedgerRepository(db)
        self.refs = ReferenceRepository(db)
        self.counter = ReceiptCounterRepository(db)
        self.balances = BalanceService(db)

    def _check_references(self, organization_id, kind: EntryKind, category_id=None, student_id=None, term_id=None) -> None:
        """Referenced records must exist inside the caller's organization"""
        if category_id is not None and self.refs.get_category(organization_id, category_id, kind.value) is None:
            raise NotFoundError("Category not found")
        if student_id is not None and self.refs.get_student(organization_id, student_id) is None:
            raise NotFoundError("Student not found")
        if term_id is not None and self.refs.get_term(organization_id, term_id) is None:
            raise NotFoundError("Term not found")

    def create_entry(self, identity: CallerIdentity, kind: EntryKind, draft: EntryDraft):
        """
        Record a new income or expense entry.

        Flow:
        1. Validate fields and references
        2. Allocate a receipt number (income only)
        3. Insert the entry
        4. Increment the student's term balance for fee payments

        Steps 2-4 commit or roll back together.

        Raises:
            ValidationError: Missing or malformed fields
            NotFoundError: Category, student or term outside the organization
            TransactionFailure: Storage error; nothing was saved
        """
        org_id = identity.organization_id

        # 1. Validate
        draft = validate_draft(kind, draft)
        self._check_references(org_id, kind, draft.category_id, draft.student_id, draft.term_id)

        with unit_of_work(self.db, f"create_{kind.value}"):
            if kind == EntryKind.INCOME:
                organization = self.refs.get_organization(org_id)
                if organization is None:
                    raise NotFoundError("Organization not found")

                # 2. Allocate receipt number
                number = self.counter.next_value(org_id)
                code = format_receipt_code(
                    organization.code,
                    number,
                    width=settings.receipt_number_width,
                    default_prefix=settings.receipt_prefix,
                )

                # 3. Insert
                entry = IncomeEntry(
                    organization_id=org_id,
                    receipt_number=number,
                    receipt_code=code,
                    student_id=draft.student_id,
                    term_id=draft.term_id,
                )
            else:
                entry = ExpenseEntry(organization_id=org_id, vendor=draft.vendor)

            entry.entry_date = draft.entry_date
            entry.description = draft.description
            entry.amount_cents = draft.amount_cents
            entry.category_id = draft.category_id
            entry.payment_method = draft.payment_method
            entry.reference = draft.reference
            entry.notes = draft.notes
            entry.created_by_id = identity.user_id
            entry.created_by_name = identity.display_name
            self.repo.add(entry)

            # 4. Fee payment moves the balance in the same transaction
            if kind == EntryKind.INCOME and draft.is_fee_payment:
                self.balances.increment(org_id, draft.student_id, draft.term_id, draft.amount_cents)

        record_entry(kind.value, draft.amount_cents if draft.is_fee_payment else None)
        log_ledger_event(
            "created",
            org_id,
            ENTITY_TYPES[kind],
            entry.id,
            entry.amount_cents,
            receipt_code=getattr(entry, "receipt_code", None),
            fee_payment=draft.is_fee_payment,
        )
        label = f" ({entry.receipt_code})" if kind == EntryKind.INCOME else ""
        AuditSink(self.db).record(
            identity,
            AuditAction.CREATE,
            ENTITY_TYPES[kind],
            entry.id,
            f"Created {kind.value}: {entry.description} - {entry.amount_cents}{label}",
            new_values=snapshot(entry, AUDIT_FIELDS[kind]),
        )
        return entry

    def create_income(self, identity: CallerIdentity, draft: EntryDraft) -> IncomeEntry:
        return self.create_entry(identity, EntryKind.INCOME, draft)

    def create_expense(self, identity: CallerIdentity, draft: EntryDraft) -> ExpenseEntry:
        return self.create_entry(identity, EntryKind.EXPENSE, draft)

    def record_student_payment(self, identity: CallerIdentity, student_id, term_id, draft: EntryDraft) -> IncomeEntry:
        """Fee payment: an income entry that always carries the student and term"""
        if student_id is None or term_id is None:
            raise ValidationError("A fee payment needs both a student and a term")
        draft.student_id = student_id
        draft.term_id = term_id
        return self.create_income(identity, draft)

    def get_entry(self, organization_id, kind: EntryKind, entry_id):
        if kind == EntryKind.INCOME:
            entry = self.repo.get_income(organization_id, entry_id)
        else:
            entry = self.repo.get_expense(organization_id, entry_id)
        if entry is None:
            raise NotFoundError(f"{kind.value.capitalize()} record not found")
        return entry

    def list_entries(
        self,
        organization_id,
        kind: EntryKind,
        start=None,
        end=None,
        category_id=None,
        student_id=None,
        payment_method: Optional[str] = None,
        include_voided: bool = False,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Any], int]:
        """Page of entries, newest first, with the total matching count"""
        if page < 1 or not 1 <= limit <= 200:
            raise ValidationError("page must be >= 1 and limit between 1 and 200")
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")

        filters: Dict[str, Any] = {"payment_method": payment_method}
        if kind == EntryKind.INCOME:
            model = IncomeEntry
            filters["student_id"] = student_id
        else:
            model = ExpenseEntry
        return self.repo.list_entries(
            model,
            organization_id,
            start=start,
            end=end,
            category_id=category_id,
            include_voided=include_voided,
            page=page,
            limit=limit,
            **filters,
        )

    def amend_entry(self, identity: CallerIdentity, kind: EntryKind, entry_id, changes: EntryChanges):
        """
        Change the descriptive fields of an entry that has not been voided.

        The receipt number, student and term never change. An amended amount
        on a fee payment is not propagated to the student's balance.
        """
        org_id = identity.organization_id
        entry = self.get_entry(org_id, kind, entry_id)
        if entry.is_voided:
            raise AlreadyVoidedError(f"Cannot edit voided {kind.value}")

        changes = validate_changes(kind, changes)
        self._check_references(org_id, kind, category_id=changes.category_id)
        before = snapshot(entry, AUDIT_FIELDS[kind])

        if (
            kind == EntryKind.INCOME
            and changes.amount_cents is not None
            and changes.amount_cents != entry.amount_cents
            and entry.student_id is not None
            and entry.term_id is not None
        ):
            logger.warning(
                "Fee payment amount amended; student balance left unchanged",
                extra={
                    "entry_id": str(entry.id),
                    "student_id": str(entry.student_id),
                    "old_amount_cents": entry.amount_cents,
                    "new_amount_cents": changes.amount_cents,
                },
            )

        values = {name: getattr(changes, name) for name in COMMON_FIELDS if getattr(changes, name) is not None}
        if kind == EntryKind.EXPENSE and changes.vendor is not None:
            values["vendor"] = changes.vendor

        with unit_of_work(self.db, f"amend_{kind.value}"):
            # Re-checks the void flag in the same statement; a void that committed meanwhile wins
            if self.repo.update_live(ENTRY_MODELS[kind], org_id, entry.id, values) == 0:
                raise AlreadyVoidedError(f"Cannot edit voided {kind.value}")
            self.db.refresh(entry)

        log_ledger_event("amended", org_id, ENTITY_TYPES[kind], entry.id, entry.amount_cents)
        AuditSink(self.db).record(
            identity,
            AuditAction.UPDATE,
            ENTITY_TYPES[kind],
            entry.id,
            f"Updated {kind.value}: {entry.description}",
            old_values=before,
            new_values=snapshot(entry, AUDIT_FIELDS[kind]),
        )
        return entry

    def void_entry(self, identity: CallerIdentity, kind: EntryKind, entry_id, reason: Optional[str]):
        """
        Soft-reverse an entry. The row stays, with its original amount, and a
        fee payment's balance is reduced by exactly that amount in the same
        transaction.

        Raises:
            ValidationError: Blank reason
            NotFoundError: Unknown entry
            AlreadyVoidedError: Entry was voided before
        """
        reason = validate_void_reason(reason)
        org_id = identity.organization_id
        entry = self.get_entry(org_id, kind, entry_id)
        if entry.is_voided:
            raise AlreadyVoidedError(f"{kind.value.capitalize()} already voided")

        with unit_of_work(self.db, f"void_{kind.value}"):
            # Only the caller whose UPDATE flips is_voided reverses the balance
            voided = self.repo.update_live(
                ENTRY_MODELS[kind],
                org_id,
                entry.id,
                {
                    "is_voided": True,
                    "void_reason": reason,
                    "voided_by_id": identity.user_id,
                    "voided_at": datetime.now(timezone.utc),
                },
            )
            if voided == 0:
                raise AlreadyVoidedError(f"{kind.value.capitalize()} already voided")
            self.db.refresh(entry)

            if kind == EntryKind.INCOME and entry.student_id is not None and entry.term_id is not None:
                self.balances.decrement(entry.student_id, entry.term_id, entry.amount_cents)

        ledger_void_counter.labels(kind=kind.value).inc()
        log_ledger_event("voided", org_id, ENTITY_TYPES[kind], entry.id, entry.amount_cents, reason=reason)
        label = entry.receipt_code if kind == EntryKind.INCOME else entry.description
        AuditSink(self.db).record(
            identity,
            AuditAction.VOID,
            ENTITY_TYPES[kind],
            entry.id,
            f"Voided {kind.value}: {label} - Reason: {reason}",
            old_values={"is_voided": False},
            new_values={"is_voided": True, "void_reason": reason},
        )
        return entry

    def verify_receipt(self, receipt_code: str) -> Dict[str, Any]:
        """
        Public receipt lookup.

        Returns the receipt's details with status "valid" or "voided"; raises
        NotFoundError for codes that were never issued.
        """
        entry = self.repo.find_by_receipt_code((receipt_code or "").strip().upper())
        if entry is None:
            raise NotFoundError("Receipt not found")

        organization = self.refs.get_organization(entry.organization_id)
        return {
            "receipt_code": entry.receipt_code,
            "receipt_number": entry.receipt_number,
            "status": "voided" if entry.is_voided else "valid",
            "school": organization.name if organization else None,
            "entry_date": entry.entry_date,
            "amount_cents": entry.amount_cents,
            "description": entry.description,
            "payment_method": entry.payment_method,
            "student_name": entry.student.full_name if entry.student else None,
            "category": entry.category.name if entry.category else None,
        }

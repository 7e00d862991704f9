"""Student fee balances per academic term"""

from typing import List
from sqlalchemy.orm import Session
from school_ledger.domain.exceptions import NotFoundError, ValidationError
from school_ledger.domain.models import AuditAction, BalanceView, CallerIdentity
from school_ledger.infrastructure.database.models import StudentBalance
from school_ledger.infrastructure.database.repositories import BalanceRepository, ReferenceRepository
from school_ledger.infrastructure.database.session import unit_of_work
from school_ledger.infrastructure.observability.logging import log_ledger_event
from school_ledger.services.audit import AuditSink


def to_view(row: StudentBalance) -> BalanceView:
    return BalanceView(
        student_id=row.student_id,
        term_id=row.term_id,
        total_fees_cents=row.total_fees_cents,
        amount_paid_cents=row.amount_paid_cents,
        previous_balance_cents=row.previous_balance_cents,
    )


class BalanceService:
    """
    Derived per-(student, term) fee position.

    `increment` and `decrement` never commit: they run inside the caller's
    unit of work so the balance moves together with the ledger entry or
    installment that caused it. The remaining operations are standalone
    writes with their own transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = BalanceRepository(db)
        self.refs = ReferenceRepository(db)

    def increment(self, organization_id, student_id, term_id, amount_cents: int) -> None:
        self.repo.increment_paid(organization_id, student_id, term_id, amount_cents)

    def decrement(self, student_id, term_id, amount_cents: int) -> None:
        """Raises InvalidStateError when there is no balance to reverse"""
        self.repo.decrement_paid(student_id, term_id, amount_cents)

    def _require_student_and_term(self, organization_id, student_id, term_id) -> None:
        if self.refs.get_student(organization_id, student_id) is None:
            raise NotFoundError("Student not found")
        if self.refs.get_term(organization_id, term_id) is None:
            raise NotFoundError("Term not found")

    def get_balance(self, organization_id, student_id, term_id) -> BalanceView:
        """Current balance; a student with no activity in the term has a zero balance"""
        self._require_student_and_term(organization_id, student_id, term_id)
        row = self.repo.get(organization_id, student_id, term_id)
        if row is None:
            return BalanceView(student_id=student_id, term_id=term_id)
        return to_view(row)

    def list_term_balances(self, organization_id, term_id, outstanding_only: bool = False) -> List[BalanceView]:
        if self.refs.get_term(organization_id, term_id) is None:
            raise NotFoundError("Term not found")
        views = [to_view(row) for row in self.repo.list_for_term(organization_id, term_id)]
        if outstanding_only:
            views = [v for v in views if v.outstanding_cents > 0]
        return sorted(views, key=lambda v: v.outstanding_cents, reverse=True)

    def set_total_fees(self, identity: CallerIdentity, student_id, term_id, total_fees_cents: int) -> BalanceView:
        """Assess the fees a student owes for a term, leaving payments untouched"""
        if total_fees_cents is None or total_fees_cents < 0:
            raise ValidationError("Total fees cannot be negative")

        org_id = identity.organization_id
        self._require_student_and_term(org_id, student_id, term_id)
        before = self.repo.get(org_id, student_id, term_id)
        old_total = before.total_fees_cents if before else 0

        with unit_of_work(self.db, "set_total_fees"):
            self.repo.set_total_fees(org_id, student_id, term_id, total_fees_cents)

        view = self.get_balance(org_id, student_id, term_id)
        log_ledger_event("fees_assessed", org_id, "student_balance", student_id, total_fees_cents, term_id=str(term_id))
        AuditSink(self.db).record(
            identity,
            AuditAction.UPDATE,
            "student_balance",
            student_id,
            "Total fees assessed",
            old_values={"total_fees_cents": old_total},
            new_values={"total_fees_cents": total_fees_cents, "term_id": str(term_id)},
        )
        return view

    def carry_forward(self, identity: CallerIdentity, student_id, from_term_id, to_term_id) -> BalanceView:
        """
        Bring a term's unpaid balance into the next term.

        The target term's previous balance becomes the source term's current
        outstanding figure (negative when the student overpaid). Payments on
        the target term are not touched; running it again simply re-applies
        the latest figure.
        """
        if from_term_id == to_term_id:
            raise ValidationError("Cannot carry a balance forward into the same term")

        org_id = identity.organization_id
        source = self.get_balance(org_id, student_id, from_term_id)
        self._require_student_and_term(org_id, student_id, to_term_id)

        with unit_of_work(self.db, "carry_forward"):
            self.repo.set_previous_balance(org_id, student_id, to_term_id, source.outstanding_cents)

        view = self.get_balance(org_id, student_id, to_term_id)
        log_ledger_event(
            "balance_carried_forward",
            org_id,
            "student_balance",
            student_id,
            source.outstanding_cents,
            from_term_id=str(from_term_id),
            to_term_id=str(to_term_id),
        )
        AuditSink(self.db).record(
            identity,
            AuditAction.UPDATE,
            "student_balance",
            student_id,
            "Balance carried forward",
            new_values={
                "from_term_id": str(from_term_id),
                "to_term_id": str(to_term_id),
                "previous_balance_cents": source.outstanding_cents,
            },
        )
        return view

"""Data access layer for ledger, balance, payment plan and budget entities"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from school_ledger.domain.exceptions import InvalidStateError
from school_ledger.domain.models import InstallmentStatus, PlanStatus, ScheduledInstallment
from school_ledger.infrastructure.database.models import (
    AcademicTerm,
    AuditLog,
    Budget,
    ExpenseEntry,
    IncomeEntry,
    Installment,
    LedgerCategory,
    Organization,
    PaymentPlanTemplate,
    ReceiptCounter,
    Student,
    StudentBalance,
    StudentPaymentPlan,
)

# Dialects with INSERT ... ON CONFLICT support
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _upsert(
    db: Session,
    model,
    values: Dict[str, Any],
    conflict_columns: List[str],
    set_: Dict[str, Any],
    index_where=None,
) -> None:
    """
    Insert a row or, when the unique key already exists, apply `set_` to it.

    Uses the dialect's INSERT ... ON CONFLICT DO UPDATE so the whole thing is a
    single statement. `set_` values may reference `excluded` through the
    callable form: set_={"col": lambda excluded: ...}. `index_where` targets a
    partial unique index.
    """
    dialect = db.get_bind().dialect.name
    insert_fn = _UPSERT_INSERTS.get(dialect)

    if insert_fn is not None:
        stmt = insert_fn(model).values(**values)
        resolved = {k: (v(stmt.excluded) if callable(v) else v) for k, v in set_.items()}
        db.execute(
            stmt.on_conflict_do_update(index_elements=conflict_columns, index_where=index_where, set_=resolved)
        )
        return

    # Other backends: update first, insert in a savepoint, retry the update if we lost the race
    key = {c: values[c] for c in conflict_columns}
    literal_set = {
        k: (v(_InsertedValues(values)) if callable(v) else v) for k, v in set_.items()
    }
    if _update_where(db, model, key, literal_set) > 0:
        return
    try:
        with db.begin_nested():
            db.execute(model.__table__.insert().values(**values))
    except IntegrityError:
        _update_where(db, model, key, literal_set)


class _InsertedValues:
    """Stands in for `excluded` when falling back to UPDATE-then-INSERT"""

    def __init__(self, values: Dict[str, Any]):
        self._values = values

    def __getattr__(self, name: str) -> Any:
        return self._values[name]


def plan_lock_statement(plan_id):
    """SELECT ... FOR UPDATE on one payment plan; backends without row locks drop the clause"""
    return (
        select(StudentPaymentPlan)
        .where(StudentPaymentPlan.id == plan_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def _update_where(db: Session, model, key: Dict[str, Any], values: Dict[str, Any]) -> int:
    stmt = update(model).execution_options(synchronize_session=False)
    for column, value in key.items():
        stmt = stmt.where(getattr(model, column) == value)
    return db.execute(stmt.values(**values)).rowcount


class ReferenceRepository:
    """Read-only lookups of organization-scoped reference data"""

    def __init__(self, db: Session):
        self.db = db

    def get_organization(self, organization_id: uuid.UUID) -> Optional[Organization]:
        return self.db.get(Organization, organization_id)

    def get_student(self, organization_id: uuid.UUID, student_id: uuid.UUID) -> Optional[Student]:
        return (
            self.db.query(Student)
            .filter(Student.id == student_id, Student.organization_id == organization_id)
            .first()
        )

    def get_term(self, organization_id: uuid.UUID, term_id: uuid.UUID) -> Optional[AcademicTerm]:
        return (
            self.db.query(AcademicTerm)
            .filter(AcademicTerm.id == term_id, AcademicTerm.organization_id == organization_id)
            .first()
        )

    def get_category(self, organization_id: uuid.UUID, category_id: uuid.UUID, kind: str) -> Optional[LedgerCategory]:
        return (
            self.db.query(LedgerCategory)
            .filter(
                LedgerCategory.id == category_id,
                LedgerCategory.organization_id == organization_id,
                LedgerCategory.kind == kind,
            )
            .first()
        )


class ReceiptCounterRepository:
    """Per-organization receipt sequence"""

    def __init__(self, db: Session):
        self.db = db

    def next_value(self, organization_id: uuid.UUID) -> int:
        """
        Allocate the next receipt number.

        The read and the increment are one UPDATE ... RETURNING statement, so two
        concurrent callers can never be handed the same number. The counter row
        is created on first use.
        """
        issued = self._increment(organization_id)
        if issued is None:
            self._create_counter(organization_id)
            issued = self._increment(organization_id)
        return issued

    def _increment(self, organization_id: uuid.UUID) -> Optional[int]:
        stmt = (
            update(ReceiptCounter)
            .where(ReceiptCounter.organization_id == organization_id)
            .values(next_value=ReceiptCounter.next_value + 1, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )

        if self.db.get_bind().dialect.update_returning:
            new_value = self.db.execute(stmt.returning(ReceiptCounter.next_value)).scalar_one_or_none()
        else:
            # The UPDATE holds the row's write lock until commit, so reading it back is safe
            if self.db.execute(stmt).rowcount == 0:
                return None
            new_value = (
                self.db.query(ReceiptCounter.next_value)
                .filter(ReceiptCounter.organization_id == organization_id)
                .scalar()
            )

        return None if new_value is None else new_value - 1

    def _create_counter(self, organization_id: uuid.UUID) -> None:
        insert_fn = _UPSERT_INSERTS.get(self.db.get_bind().dialect.name)
        if insert_fn is not None:
            self.db.execute(
                insert_fn(ReceiptCounter)
                .values(organization_id=organization_id, next_value=1)
                .on_conflict_do_nothing(index_elements=["organization_id"])
            )
            return
        try:
            with self.db.begin_nested():
                self.db.execute(
                    ReceiptCounter.__table__.insert().values(organization_id=organization_id, next_value=1)
                )
        except IntegrityError:
            pass  # Another caller created it first


class LedgerRepository:
    """Income and expense entries"""

    def __init__(self, db: Session):
        self.db = db

    def add(self, entry):
        self.db.add(entry)
        self.db.flush()  # Get ID without committing
        return entry

    def get_income(self, organization_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[IncomeEntry]:
        return (
            self.db.query(IncomeEntry)
            .filter(IncomeEntry.id == entry_id, IncomeEntry.organization_id == organization_id)
            .first()
        )

    def get_expense(self, organization_id: uuid.UUID, entry_id: uuid.UUID) -> Optional[ExpenseEntry]:
        return (
            self.db.query(ExpenseEntry)
            .filter(ExpenseEntry.id == entry_id, ExpenseEntry.organization_id == organization_id)
            .first()
        )

    def find_by_receipt_code(self, receipt_code: str) -> Optional[IncomeEntry]:
        return self.db.query(IncomeEntry).filter(IncomeEntry.receipt_code == receipt_code).first()

    def update_live(self, model, organization_id: uuid.UUID, entry_id: uuid.UUID, values: Dict[str, Any]) -> int:
        """
        Write to an entry only while it is not voided.

        The voided check and the write are one UPDATE, so of two concurrent
        callers at most one sees a row count of 1 for a void.
        """
        return _update_where(
            self.db,
            model,
            {"id": entry_id, "organization_id": organization_id, "is_voided": False},
            {**values, "updated_at": _utcnow()},
        )

    def list_entries(
        self,
        model,
        organization_id: uuid.UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
        category_id: Optional[uuid.UUID] = None,
        include_voided: bool = False,
        page: int = 1,
        limit: int = 50,
        **filters: Any,
    ) -> Tuple[List[Any], int]:
        """Fetch a page of entries (newest first) and the total matching count"""
        query = self.db.query(model).filter(model.organization_id == organization_id)
        if not include_voided:
            query = query.filter(model.is_voided.is_(False))
        if start:
            query = query.filter(model.entry_date >= start)
        if end:
            query = query.filter(model.entry_date <= end)
        if category_id:
            query = query.filter(model.category_id == category_id)
        for column, value in filters.items():
            if value is not None:
                query = query.filter(getattr(model, column) == value)

        total = query.count()
        items = (
            query.order_by(model.entry_date.desc(), model.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def sum_expenses(
        self,
        organization_id: uuid.UUID,
        start: date,
        end: date,
        category: Optional[str] = None,
    ) -> int:
        """Sum of non-voided expenses dated within [start, end], optionally for one category name"""
        query = self.db.query(func.coalesce(func.sum(ExpenseEntry.amount_cents), 0)).filter(
            ExpenseEntry.organization_id == organization_id,
            ExpenseEntry.is_voided.is_(False),
            ExpenseEntry.entry_date >= start,
            ExpenseEntry.entry_date <= end,
        )
        if category is not None:
            query = query.join(LedgerCategory, ExpenseEntry.category_id == LedgerCategory.id).filter(
                LedgerCategory.name == category
            )
        return int(query.scalar())


class BalanceRepository:
    """Student fee balances; all amount changes are in-database deltas"""

    def __init__(self, db: Session):
        self.db = db

    def _new_row(self, organization_id, student_id, term_id, **amounts: int) -> Dict[str, Any]:
        row = {
            "id": uuid.uuid4(),
            "organization_id": organization_id,
            "student_id": student_id,
            "term_id": term_id,
            "total_fees_cents": 0,
            "amount_paid_cents": 0,
            "previous_balance_cents": 0,
        }
        row.update(amounts)
        return row

    def increment_paid(self, organization_id, student_id, term_id, delta_cents: int) -> None:
        """Add to amount paid, creating the balance row on the first payment"""
        _upsert(
            self.db,
            StudentBalance,
            self._new_row(organization_id, student_id, term_id, amount_paid_cents=delta_cents),
            ["student_id", "term_id"],
            {
                "amount_paid_cents": lambda excluded: StudentBalance.amount_paid_cents + excluded.amount_paid_cents,
                "updated_at": _utcnow(),
            },
        )

    def decrement_paid(self, student_id, term_id, delta_cents: int) -> None:
        """Reverse a payment; there must be a balance to reverse it from"""
        updated = _update_where(
            self.db,
            StudentBalance,
            {"student_id": student_id, "term_id": term_id},
            {"amount_paid_cents": StudentBalance.amount_paid_cents - delta_cents, "updated_at": _utcnow()},
        )
        if updated == 0:
            raise InvalidStateError("No balance exists for this student and term; nothing to reverse")

    def set_total_fees(self, organization_id, student_id, term_id, total_fees_cents: int) -> None:
        _upsert(
            self.db,
            StudentBalance,
            self._new_row(organization_id, student_id, term_id, total_fees_cents=total_fees_cents),
            ["student_id", "term_id"],
            {"total_fees_cents": total_fees_cents, "updated_at": _utcnow()},
        )

    def set_previous_balance(self, organization_id, student_id, term_id, previous_cents: int) -> None:
        _upsert(
            self.db,
            StudentBalance,
            self._new_row(organization_id, student_id, term_id, previous_balance_cents=previous_cents),
            ["student_id", "term_id"],
            {"previous_balance_cents": previous_cents, "updated_at": _utcnow()},
        )

    def get(self, organization_id, student_id, term_id) -> Optional[StudentBalance]:
        return (
            self.db.query(StudentBalance)
            .filter(
                StudentBalance.organization_id == organization_id,
                StudentBalance.student_id == student_id,
                StudentBalance.term_id == term_id,
            )
            .populate_existing()
            .first()
        )

    def list_for_term(self, organization_id, term_id) -> List[StudentBalance]:
        return (
            self.db.query(StudentBalance)
            .filter(StudentBalance.organization_id == organization_id, StudentBalance.term_id == term_id)
            .populate_existing()
            .all()
        )


class PlanRepository:
    """Repository for payment plan templates, enrolments and installments"""

    def __init__(self, db: Session):
        self.db = db

    def add_template(self, template: PaymentPlanTemplate) -> PaymentPlanTemplate:
        self.db.add(template)
        self.db.flush()
        return template

    def get_template(self, organization_id, template_id) -> Optional[PaymentPlanTemplate]:
        return (
            self.db.query(PaymentPlanTemplate)
            .filter(PaymentPlanTemplate.id == template_id, PaymentPlanTemplate.organization_id == organization_id)
            .first()
        )

    def list_templates(self, organization_id) -> List[Tuple[PaymentPlanTemplate, int]]:
        """Templates with their enrolment counts, newest first"""
        enrolled = func.count(StudentPaymentPlan.id)
        return (
            self.db.query(PaymentPlanTemplate, enrolled)
            .outerjoin(StudentPaymentPlan, StudentPaymentPlan.template_id == PaymentPlanTemplate.id)
            .filter(PaymentPlanTemplate.organization_id == organization_id)
            .group_by(PaymentPlanTemplate.id)
            .order_by(PaymentPlanTemplate.created_at.desc())
            .all()
        )

    def count_enrolments(self, template_id) -> int:
        return self.db.query(StudentPaymentPlan).filter(StudentPaymentPlan.template_id == template_id).count()

    def delete_template(self, template: PaymentPlanTemplate) -> None:
        self.db.delete(template)

    def find_enrolment(self, student_id, template_id) -> Optional[StudentPaymentPlan]:
        return (
            self.db.query(StudentPaymentPlan)
            .filter(StudentPaymentPlan.student_id == student_id, StudentPaymentPlan.template_id == template_id)
            .first()
        )

    def create_plan(
        self,
        organization_id,
        student_id,
        template_id,
        total_cents: int,
        installments: Sequence[ScheduledInstallment],
    ) -> StudentPaymentPlan:
        """Create a student plan with its installments in one batch"""
        db_plan = StudentPaymentPlan(
            organization_id=organization_id,
            student_id=student_id,
            template_id=template_id,
            total_cents=total_cents,
            status=PlanStatus.ACTIVE.value,
        )
        self.db.add(db_plan)
        self.db.flush()

        self.db.add_all(
            [
                Installment(
                    organization_id=organization_id,
                    plan_id=db_plan.id,
                    sequence=inst.sequence,
                    amount_cents=inst.amount_cents,
                    paid_cents=0,
                    due_date=inst.due_date,
                    status=InstallmentStatus.PENDING.value,
                )
                for inst in installments
            ]
        )
        self.db.flush()
        return db_plan

    def get_student_plans(self, organization_id, student_id) -> List[StudentPaymentPlan]:
        return (
            self.db.query(StudentPaymentPlan)
            .filter(StudentPaymentPlan.organization_id == organization_id, StudentPaymentPlan.student_id == student_id)
            .order_by(StudentPaymentPlan.created_at.desc())
            .all()
        )

    def get_installment(self, organization_id, installment_id) -> Optional[Installment]:
        return (
            self.db.query(Installment)
            .filter(Installment.id == installment_id, Installment.organization_id == organization_id)
            .first()
        )

    def add_paid(self, installment: Installment, delta_cents: int) -> Installment:
        """Apply a payment as a delta and reload the row to see the combined total"""
        _update_where(
            self.db,
            Installment,
            {"id": installment.id},
            {"paid_cents": Installment.paid_cents + delta_cents},
        )
        self.db.refresh(installment)
        return installment

    def lock_plan(self, plan_id) -> StudentPaymentPlan:
        """Hold the plan row until commit so sibling payments decide completion one at a time"""
        return self.db.execute(plan_lock_statement(plan_id)).scalar_one()

    def plan_statuses(self, plan_id) -> List[str]:
        return [row[0] for row in self.db.query(Installment.status).filter(Installment.plan_id == plan_id).all()]

    def complete_plan(self, plan_id, when: datetime) -> None:
        _update_where(
            self.db,
            StudentPaymentPlan,
            {"id": plan_id},
            {"status": PlanStatus.COMPLETED.value, "completed_at": when},
        )

    def sweep_overdue(self, organization_id, today: date) -> int:
        """Bulk move pending installments past their due date to overdue"""
        stmt = (
            update(Installment)
            .where(
                Installment.organization_id == organization_id,
                Installment.status == InstallmentStatus.PENDING.value,
                Installment.due_date < today,
            )
            .values(status=InstallmentStatus.OVERDUE.value)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def mark_reminder_sent(self, installment_id, when: datetime) -> None:
        _update_where(self.db, Installment, {"id": installment_id}, {"reminder_sent": True, "reminder_sent_at": when})

    def list_installments(
        self,
        organization_id,
        status: Optional[str] = None,
        due_before: Optional[date] = None,
        due_between: Optional[Tuple[date, date]] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[Installment]:
        query = self.db.query(Installment).filter(Installment.organization_id == organization_id)
        if status:
            query = query.filter(Installment.status == status)
        if statuses:
            query = query.filter(Installment.status.in_(list(statuses)))
        if due_before:
            query = query.filter(Installment.due_date < due_before)
        if due_between:
            query = query.filter(Installment.due_date >= due_between[0], Installment.due_date <= due_between[1])
        return query.order_by(Installment.due_date.asc(), Installment.sequence.asc()).all()

    def count_active_plans(self, organization_id) -> int:
        return (
            self.db.query(StudentPaymentPlan)
            .filter(
                StudentPaymentPlan.organization_id == organization_id,
                StudentPaymentPlan.status == PlanStatus.ACTIVE.value,
            )
            .count()
        )

    def installment_totals(self, organization_id) -> Tuple[int, int]:
        """(total expected, total collected) across every installment"""
        expected, collected = (
            self.db.query(
                func.coalesce(func.sum(Installment.amount_cents), 0),
                func.coalesce(func.sum(Installment.paid_cents), 0),
            )
            .filter(Installment.organization_id == organization_id)
            .one()
        )
        return int(expected), int(collected)


class BudgetRepository:
    """Planned spend per category and period"""

    def __init__(self, db: Session):
        self.db = db

    def find(self, organization_id, category: str, period_type: str, year: int, month: Optional[int]) -> Optional[Budget]:
        query = self.db.query(Budget).filter(
            Budget.organization_id == organization_id,
            Budget.category == category,
            Budget.period_type == period_type,
            Budget.year == year,
        )
        query = query.filter(Budget.month.is_(None)) if month is None else query.filter(Budget.month == month)
        return query.populate_existing().first()

    def upsert(
        self,
        organization_id,
        category: str,
        period_type: str,
        year: int,
        month: Optional[int],
        amount_cents: int,
        created_by_id=None,
    ) -> Budget:
        """Create the budget for this exact key, or replace its planned amount, in one statement"""
        key = {
            "organization_id": organization_id,
            "category": category,
            "period_type": period_type,
            "year": year,
            "month": month,
        }
        # Yearly keys (month NULL) are enforced by the partial index uq_budget_yearly_period
        conflict_columns = list(key) if month is not None else ["organization_id", "category", "period_type", "year"]
        _upsert(
            self.db,
            Budget,
            {"id": uuid.uuid4(), **key, "amount_cents": amount_cents, "created_by_id": created_by_id},
            conflict_columns,
            {"amount_cents": amount_cents, "updated_at": _utcnow()},
            index_where=Budget.month.is_(None) if month is None else None,
        )
        return self.find(organization_id, category, period_type, year, month)

    def list_for_period(self, organization_id, year: int, period_type: Optional[str] = None, month: Optional[int] = None) -> List[Budget]:
        query = self.db.query(Budget).filter(Budget.organization_id == organization_id, Budget.year == year)
        if period_type:
            query = query.filter(Budget.period_type == period_type)
        if month is not None:
            query = query.filter(Budget.month == month)
        return query.order_by(Budget.category.asc()).all()

    def get(self, organization_id, budget_id) -> Optional[Budget]:
        return (
            self.db.query(Budget)
            .filter(Budget.id == budget_id, Budget.organization_id == organization_id)
            .first()
        )

    def delete(self, organization_id, budget_id) -> int:
        stmt = (
            delete(Budget)
            .where(Budget.id == budget_id, Budget.organization_id == organization_id)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount


class AuditRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, entry: AuditLog) -> AuditLog:
        self.db.add(entry)
        self.db.flush()
        return entry

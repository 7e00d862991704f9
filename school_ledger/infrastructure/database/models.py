"""SQLAlchemy ORM models for the fee ledger, balances, payment plans and budgets"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
    Index,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class Organization(Base):
    """School using the ledger; `code` prefixes its receipt numbers"""

    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(16), nullable=True)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Student(Base):
    """Reference data maintained by the student registry"""

    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    student_number = Column(String(32), nullable=False)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    parent_phone = Column(String(32), nullable=True)
    parent_email = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AcademicTerm(Base):
    __tablename__ = "academic_terms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    year = Column(Integer, nullable=False)
    term_number = Column(Integer, nullable=False)


class LedgerCategory(Base):
    """Income or expense category; budgets match expense categories by name"""

    __tablename__ = "ledger_categories"
    __table_args__ = (UniqueConstraint("organization_id", "kind", "name"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    kind = Column(String(16), nullable=False)  # income | expense
    name = Column(Text, nullable=False)


class LedgerEntryColumns:
    """Columns shared by both ledger entry variants"""

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    entry_date = Column(Date, nullable=False)
    description = Column(String(500), nullable=False)
    amount_cents = Column(BigInteger, nullable=False)  # always positive
    payment_method = Column(String(32), nullable=True)
    reference = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Uuid, nullable=False)
    created_by_name = Column(Text, nullable=True)

    # Void fields are the only ones that may change after voiding
    is_voided = Column(Boolean, nullable=False, default=False)
    void_reason = Column(Text, nullable=True)
    voided_by_id = Column(Uuid, nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class IncomeEntry(LedgerEntryColumns, Base):
    __tablename__ = "income_entries"
    __table_args__ = (
        UniqueConstraint("organization_id", "receipt_number"),
        UniqueConstraint("organization_id", "receipt_code"),
        Index("ix_income_student_term", "student_id", "term_id"),
    )

    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    category_id = Column(Uuid, ForeignKey("ledger_categories.id"), nullable=True)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=True)
    term_id = Column(Uuid, ForeignKey("academic_terms.id"), nullable=True)
    receipt_number = Column(BigInteger, nullable=False)
    receipt_code = Column(String(48), nullable=False, index=True)

    category = relationship("LedgerCategory")
    student = relationship("Student")


class ExpenseEntry(LedgerEntryColumns, Base):
    __tablename__ = "expense_entries"
    __table_args__ = (Index("ix_expense_org_date", "organization_id", "entry_date"),)

    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    category_id = Column(Uuid, ForeignKey("ledger_categories.id"), nullable=True)
    vendor = Column(Text, nullable=True)

    category = relationship("LedgerCategory")


class ReceiptCounter(Base):
    """Next receipt number to issue per organization; only ever incremented"""

    __tablename__ = "receipt_counters"

    organization_id = Column(Uuid, ForeignKey("organizations.id"), primary_key=True)
    next_value = Column(BigInteger, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class StudentBalance(Base):
    """Per (student, term) fee position; outstanding is derived, never stored"""

    __tablename__ = "student_balances"
    __table_args__ = (UniqueConstraint("student_id", "term_id", name="uq_student_balance_student_term"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False)
    term_id = Column(Uuid, ForeignKey("academic_terms.id"), nullable=False, index=True)
    total_fees_cents = Column(BigInteger, nullable=False, default=0)
    amount_paid_cents = Column(BigInteger, nullable=False, default=0)
    previous_balance_cents = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    @property
    def outstanding_cents(self) -> int:
        return self.total_fees_cents + self.previous_balance_cents - self.amount_paid_cents


class PaymentPlanTemplate(Base):
    """Reusable installment schedule definition"""

    __tablename__ = "payment_plan_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    total_cents = Column(BigInteger, nullable=False)
    installment_count = Column(Integer, nullable=False)
    term_id = Column(Uuid, ForeignKey("academic_terms.id"), nullable=True)
    created_by_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    enrolments = relationship("StudentPaymentPlan", back_populates="template")


class StudentPaymentPlan(Base):
    """A student's enrolment in a payment plan template"""

    __tablename__ = "student_payment_plans"
    __table_args__ = (UniqueConstraint("student_id", "template_id", name="uq_student_plan_template"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False, index=True)
    template_id = Column(Uuid, ForeignKey("payment_plan_templates.id"), nullable=False)
    total_cents = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default="active")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    template = relationship("PaymentPlanTemplate", back_populates="enrolments")
    student = relationship("Student")
    installments = relationship(
        "Installment",
        back_populates="plan",
        order_by="Installment.sequence",
    )


class Installment(Base):
    """Individual installment within a student's payment plan"""

    __tablename__ = "installments"
    __table_args__ = (Index("ix_installment_org_status_due", "organization_id", "status", "due_date"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False)
    plan_id = Column(Uuid, ForeignKey("student_payment_plans.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    paid_cents = Column(BigInteger, nullable=False, default=0)
    due_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    paid_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    plan = relationship("StudentPaymentPlan", back_populates="installments")


class Budget(Base):
    """Planned spend for an expense category over a month or a year"""

    __tablename__ = "budgets"
    __table_args__ = (
        UniqueConstraint("organization_id", "category", "period_type", "year", "month", name="uq_budget_period"),
        # NULL months never collide above, so yearly keys get their own partial index
        Index(
            "uq_budget_yearly_period",
            "organization_id",
            "category",
            "period_type",
            "year",
            unique=True,
            postgresql_where=text("month IS NULL"),
            sqlite_where=text("month IS NULL"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    category = Column(Text, nullable=False)
    period_type = Column(String(16), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=True)  # monthly budgets only
    amount_cents = Column(BigInteger, nullable=False)
    created_by_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class AuditLog(Base):
    """Who changed what, with before/after snapshots"""

    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id = Column(Uuid, nullable=False, index=True)
    actor_id = Column(Uuid, nullable=True)
    actor_name = Column(Text, nullable=True)
    actor_role = Column(String(32), nullable=True)
    action = Column(String(32), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

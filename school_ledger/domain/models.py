"""Domain models - pure Python dataclasses representing business entities"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


class EntryKind(str, Enum):
    """Ledger entry variant; amounts are positive, the kind implies the sign"""

    INCOME = "income"
    EXPENSE = "expense"


class PaymentMethod(str, Enum):
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"
    SCHOOL_PAY = "school_pay"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    EXCEEDED = "exceeded"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    VOID = "VOID"
    DELETE = "DELETE"
    PAYMENT = "PAYMENT"
    REMINDER = "REMINDER"
    SWEEP = "SWEEP"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller forwarded by the upstream gateway"""

    organization_id: uuid.UUID
    user_id: uuid.UUID
    display_name: str
    role: str


@dataclass
class EntryDraft:
    """Fields for a new income or expense entry"""

    entry_date: Optional[date]
    description: str
    amount_cents: int
    category_id: Optional[uuid.UUID] = None
    payment_method: Optional[str] = None
    student_id: Optional[uuid.UUID] = None  # income only
    term_id: Optional[uuid.UUID] = None  # income only
    reference: Optional[str] = None
    vendor: Optional[str] = None  # expense only
    notes: Optional[str] = None

    @property
    def is_fee_payment(self) -> bool:
        return self.student_id is not None and self.term_id is not None


@dataclass
class EntryChanges:
    """Amendment of a non-voided entry; None leaves a field untouched"""

    entry_date: Optional[date] = None
    description: Optional[str] = None
    amount_cents: Optional[int] = None
    category_id: Optional[uuid.UUID] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    vendor: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class BalanceView:
    """Fee position of one student for one term"""

    student_id: uuid.UUID
    term_id: uuid.UUID
    total_fees_cents: int = 0
    amount_paid_cents: int = 0
    previous_balance_cents: int = 0

    @property
    def outstanding_cents(self) -> int:
        return self.total_fees_cents + self.previous_balance_cents - self.amount_paid_cents


@dataclass
class ScheduledInstallment:
    """Single payment in a student's installment schedule"""

    sequence: int
    due_date: date
    amount_cents: int


@dataclass
class BudgetFigures:
    """Planned vs actual spend for one budget period"""

    planned_cents: int
    actual_cents: int
    percentage: float
    status: BudgetStatus

    @property
    def remaining_cents(self) -> int:
        return self.planned_cents - self.actual_cents


@dataclass
class CategoryOverrun:
    category: str
    planned_cents: int
    actual_cents: int

    @property
    def over_cents(self) -> int:
        return self.actual_cents - self.planned_cents


@dataclass
class BudgetSummary:
    """Output of budget reconciliation for a category or a whole period"""

    category: Optional[str]
    period_type: BudgetPeriod
    year: int
    month: Optional[int]
    figures: BudgetFigures
    over_budget: List[CategoryOverrun] = field(default_factory=list)


@dataclass
class PlanSummary:
    active_plans: int
    overdue_installments: int
    upcoming_installments: int
    total_expected_cents: int
    total_collected_cents: int


@dataclass
class DeliveryResult:
    """Outcome reported by the messaging gateway"""

    success: bool
    detail: str = ""

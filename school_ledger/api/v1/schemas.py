"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date, datetime
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field
from school_ledger.domain.models import BudgetPeriod, BudgetStatus, InstallmentStatus, PaymentMethod

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """Success envelope wrapping every response body"""

    success: bool = True
    data: T


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int


class MessageResponse(BaseModel):
    message: str


# Ledger entries


class IncomeCreateRequest(BaseModel):
    """Request body for POST /v1/income"""

    entry_date: date
    description: str = Field(..., max_length=500, description="What the money was received for")
    amount_cents: int = Field(..., gt=0, description="Amount received in minor units")
    payment_method: PaymentMethod
    category_id: Optional[uuid.UUID] = None
    student_id: Optional[uuid.UUID] = None
    term_id: Optional[uuid.UUID] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class ExpenseCreateRequest(BaseModel):
    """Request body for POST /v1/expenses"""

    entry_date: date
    description: str = Field(..., max_length=500)
    amount_cents: int = Field(..., gt=0, description="Amount spent in minor units")
    category_id: Optional[uuid.UUID] = None
    payment_method: Optional[PaymentMethod] = None
    vendor: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class EntryUpdateRequest(BaseModel):
    """Request body for PUT /v1/income/{id} and /v1/expenses/{id}; omitted fields are unchanged"""

    entry_date: Optional[date] = None
    description: Optional[str] = Field(None, max_length=500)
    amount_cents: Optional[int] = Field(None, gt=0)
    category_id: Optional[uuid.UUID] = None
    payment_method: Optional[PaymentMethod] = None
    vendor: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class VoidRequest(BaseModel):
    reason: str = ""


class EntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entry_date: date
    description: str
    amount_cents: int
    category_id: Optional[uuid.UUID] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    is_voided: bool
    void_reason: Optional[str] = None
    voided_at: Optional[datetime] = None
    created_by_name: Optional[str] = None
    created_at: Optional[datetime] = None


class IncomeResponse(EntryResponse):
    receipt_number: int
    receipt_code: str
    student_id: Optional[uuid.UUID] = None
    term_id: Optional[uuid.UUID] = None


class ExpenseResponse(EntryResponse):
    vendor: Optional[str] = None


# Students


class StudentPaymentRequest(BaseModel):
    """Request body for POST /v1/students/{id}/payments"""

    term_id: uuid.UUID
    entry_date: date
    amount_cents: int = Field(..., gt=0)
    payment_method: PaymentMethod
    description: str = Field("School fees payment", max_length=500)
    category_id: Optional[uuid.UUID] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class TotalFeesRequest(BaseModel):
    term_id: uuid.UUID
    total_fees_cents: int = Field(..., ge=0)


class CarryForwardRequest(BaseModel):
    from_term_id: uuid.UUID
    to_term_id: uuid.UUID


class BalanceResponse(BaseModel):
    student_id: uuid.UUID
    term_id: uuid.UUID
    total_fees_cents: int
    amount_paid_cents: int
    previous_balance_cents: int
    outstanding_cents: int


# Payment plans


class PlanTemplateRequest(BaseModel):
    """Request body for POST /v1/payment-plans"""

    name: str
    total_cents: int = Field(..., gt=0)
    installment_count: int = Field(..., ge=1)
    term_id: Optional[uuid.UUID] = None


class PlanTemplateResponse(BaseModel):
    id: uuid.UUID
    name: str
    total_cents: int
    installment_count: int
    term_id: Optional[uuid.UUID] = None
    enrolled_count: int = 0


class AssignPlanRequest(BaseModel):
    """Request body for POST /v1/payment-plans/assign"""

    student_id: uuid.UUID
    plan_id: uuid.UUID
    due_dates: List[date]
    custom_amount_cents: Optional[int] = None


class InstallmentSchema(BaseModel):
    """Single installment in a student's payment plan"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    plan_id: uuid.UUID
    sequence: int
    amount_cents: int
    paid_cents: int
    due_date: date
    status: InstallmentStatus
    paid_at: Optional[datetime] = None
    reminder_sent: bool = False
    reminder_sent_at: Optional[datetime] = None


class StudentPlanResponse(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    template_id: uuid.UUID
    plan_name: str
    total_cents: int
    status: str
    completed_at: Optional[datetime] = None
    installments: List[InstallmentSchema]


class InstallmentPaymentRequest(BaseModel):
    amount_cents: int


class SweepResponse(BaseModel):
    updated: int
    message: str


class PlanSummaryResponse(BaseModel):
    active_plans: int
    overdue_installments: int
    upcoming_installments: int
    total_expected_cents: int
    total_collected_cents: int


# Budgets


class BudgetRequest(BaseModel):
    """Request body for POST /v1/budgets"""

    category: str
    amount_cents: int
    period_type: BudgetPeriod = BudgetPeriod.MONTHLY
    year: int
    month: Optional[int] = None


class BulkBudgetItem(BaseModel):
    category: str
    amount_cents: int


class BulkBudgetRequest(BaseModel):
    period_type: BudgetPeriod = BudgetPeriod.MONTHLY
    year: int
    month: Optional[int] = None
    budgets: List[BulkBudgetItem]


class BudgetResponse(BaseModel):
    id: uuid.UUID
    category: str
    period_type: BudgetPeriod
    year: int
    month: Optional[int] = None
    amount_cents: int
    actual_cents: int
    remaining_cents: int
    percentage: float
    status: BudgetStatus


class CategoryOverrunSchema(BaseModel):
    category: str
    planned_cents: int
    actual_cents: int
    over_cents: int


class BudgetSummaryResponse(BaseModel):
    category: Optional[str] = None
    period_type: BudgetPeriod
    year: int
    month: Optional[int] = None
    planned_cents: int
    actual_cents: int
    remaining_cents: int
    percentage: float
    status: BudgetStatus
    over_budget: List[CategoryOverrunSchema] = []


# Receipts


class ReceiptVerificationResponse(BaseModel):
    receipt_code: str
    receipt_number: int
    status: str  # valid | voided
    school: Optional[str] = None
    entry_date: date
    amount_cents: int
    description: str
    payment_method: Optional[str] = None
    student_name: Optional[str] = None
    category: Optional[str] = None

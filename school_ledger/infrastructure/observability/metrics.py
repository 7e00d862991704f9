"""Prometheus metrics for ledger activity, installment collection and budget health"""

from prometheus_client import Counter, Histogram

# Ledger metrics
ledger_entry_counter = Counter(
    "school_ledger_entries_total",
    "Ledger entries recorded",
    ["kind"],  # income | expense
)

ledger_void_counter = Counter(
    "school_ledger_voids_total",
    "Ledger entries voided",
    ["kind"],
)

receipts_issued_counter = Counter(
    "school_ledger_receipts_issued_total",
    "Receipt numbers allocated",
)

fee_payment_amount_histogram = Histogram(
    "school_ledger_fee_payment_amount",
    "Size of fee payments applied to student balances",
    buckets=[10_000, 50_000, 100_000, 250_000, 500_000, 1_000_000, 2_500_000],
)

# Installment metrics
installment_payment_counter = Counter(
    "school_ledger_installment_payments_total",
    "Installment payments recorded",
    ["status"],  # partial | paid
)

plan_completion_counter = Counter(
    "school_ledger_plans_completed_total",
    "Student payment plans fully paid",
)

overdue_transition_counter = Counter(
    "school_ledger_installments_marked_overdue_total",
    "Installments moved to overdue by the sweep",
)

reminder_counter = Counter(
    "school_ledger_reminders_total",
    "Installment reminders attempted",
    ["outcome"],  # sent | failed
)

sms_latency_histogram = Histogram(
    "sms_gateway_latency_seconds",
    "SMS gateway response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Budget metrics
budget_evaluation_counter = Counter(
    "school_ledger_budget_evaluations_total",
    "Budget reconciliations by resulting status",
    ["status"],  # ok | warning | exceeded
)

# Service health
transaction_failure_counter = Counter(
    "school_ledger_transaction_failures_total",
    "Units of work rolled back after a storage error",
    ["operation"],
)

request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_entry(kind: str, fee_payment_cents: int | None = None) -> None:
    """Record a new ledger entry, and its size when it paid down a student balance"""
    ledger_entry_counter.labels(kind=kind).inc()
    if kind == "income":
        receipts_issued_counter.inc()
    if fee_payment_cents is not None:
        fee_payment_amount_histogram.observe(fee_payment_cents)


def record_installment_payment(status: str, plan_completed: bool) -> None:
    installment_payment_counter.labels(status=status).inc()
    if plan_completed:
        plan_completion_counter.inc()

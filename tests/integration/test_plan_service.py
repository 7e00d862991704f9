"""Integration tests for the installment engine"""

import asyncio
import uuid
import httpx
import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import sessionmaker
from school_ledger.domain.exceptions import ConflictError, MessagingError, NotFoundError, ValidationError
from school_ledger.infrastructure.clients.messaging import SmsClient
from school_ledger.infrastructure.database.models import Installment, StudentPaymentPlan
from school_ledger.infrastructure.database.repositories import plan_lock_statement
from school_ledger.services.balances import BalanceService
from school_ledger.services.plans import PlanService


DUE_DATES = [date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1)]


@pytest.fixture
def template(db, school, admin):
    return PlanService(db).create_template(admin, "Term 1 Plan", 300000, 3, term_id=school["term1"].id)


@pytest.fixture
def plan(db, school, admin, template):
    return PlanService(db).assign_plan(admin, school["student"].id, template.id, DUE_DATES)


def sms_client(body: str = "OK", status_code: int = 200, calls: list | None = None) -> SmsClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, text=body)

    return SmsClient(
        base_url="http://sms.test/api/v1/plain/",
        username="school",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


def test_assign_plan_creates_equal_pending_installments(plan):
    """Plan total 300,000 over 3 due dates"""
    installments = plan.installments

    assert plan.status == "active"
    assert [i.amount_cents for i in installments] == [100000, 100000, 100000]
    assert [i.status for i in installments] == ["pending"] * 3
    assert [i.due_date for i in installments] == DUE_DATES


def test_custom_amount_overrides_template_total(db, school, admin, template):
    plan = PlanService(db).assign_plan(admin, school["student"].id, template.id, DUE_DATES[:2], custom_amount_cents=150000)

    assert plan.total_cents == 150000
    assert [i.amount_cents for i in plan.installments] == [75000, 75000]


def test_student_enrolled_once_per_plan(db, school, admin, template, plan):
    with pytest.raises(ConflictError):
        PlanService(db).assign_plan(admin, school["student"].id, template.id, DUE_DATES)


@pytest.mark.parametrize("due_dates,custom", [([], None), (DUE_DATES, 0), (DUE_DATES, -5)])
def test_assign_plan_validation(db, school, admin, template, due_dates, custom):
    with pytest.raises(ValidationError):
        PlanService(db).assign_plan(admin, school["student"].id, template.id, due_dates, custom)


def test_template_with_enrolment_cannot_be_deleted(db, admin, template, plan):
    with pytest.raises(ConflictError):
        PlanService(db).delete_template(admin, template.id)


def test_unused_template_can_be_deleted(db, admin, template):
    service = PlanService(db)
    service.delete_template(admin, template.id)

    with pytest.raises(NotFoundError):
        service.delete_template(admin, template.id)


def test_templates_listed_with_enrolment_counts(db, admin, template, plan):
    rows = PlanService(db).list_templates(admin.organization_id)
    assert [(t.name, count) for t, count in rows] == [("Term 1 Plan", 1)]


def test_partial_then_full_payment_completes_plan(db, school, admin, plan):
    service = PlanService(db)
    first, second, third = [i.id for i in plan.installments]

    inst = service.record_payment(admin, first, 60000)
    assert inst.status == "partial"
    assert inst.paid_at is None

    inst = service.record_payment(admin, first, 40000)
    assert inst.status == "paid"
    assert inst.paid_at is not None

    service.record_payment(admin, second, 100000)
    assert service.get_student_plans(admin.organization_id, school["student"].id)[0].status == "active"

    service.record_payment(admin, third, 100000)
    refreshed = service.get_student_plans(admin.organization_id, school["student"].id)[0]
    assert refreshed.status == "completed"
    assert refreshed.completed_at is not None


def test_plan_row_is_locked_for_payments():
    sql = str(plan_lock_statement(uuid.uuid4()).compile(dialect=postgresql.dialect()))

    assert "FROM student_payment_plans" in sql
    assert sql.rstrip().endswith("FOR UPDATE")


def test_concurrent_final_payments_complete_plan(db, school, admin, plan):
    """The last two installments paid in parallel still close the plan"""
    service = PlanService(db)
    first, second, third = [i.id for i in plan.installments]
    service.record_payment(admin, first, 100000)
    db.commit()
    worker_sessions = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())

    def pay(installment_id):
        session = worker_sessions()
        try:
            return PlanService(session).record_payment(admin, installment_id, 100000).status
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        statuses = list(pool.map(pay, [second, third]))

    assert statuses == ["paid", "paid"]
    db.expire_all()
    stored = db.get(StudentPaymentPlan, plan.id)
    assert stored.status == "completed"
    assert stored.completed_at is not None


def test_installment_payment_credits_term_balance(db, school, admin, plan):
    PlanService(db).record_payment(admin, plan.installments[0].id, 60000)

    balance = BalanceService(db).get_balance(admin.organization_id, school["student"].id, school["term1"].id)
    assert balance.amount_paid_cents == 60000


def test_overpayment_is_accepted(db, admin, plan):
    inst = PlanService(db).record_payment(admin, plan.installments[0].id, 120000)

    assert inst.status == "paid"
    assert inst.paid_cents == 120000


def test_payment_validation(db, admin, plan):
    service = PlanService(db)
    with pytest.raises(ValidationError):
        service.record_payment(admin, plan.installments[0].id, 0)
    with pytest.raises(NotFoundError):
        service.record_payment(admin, plan.template_id, 1000)


def test_sweep_marks_pending_past_due_once(db, admin, plan):
    service = PlanService(db)
    first, second, _ = [i.id for i in plan.installments]
    service.record_payment(admin, second, 10000)  # partial stays partial

    assert service.sweep_overdue(admin, today=date(2024, 3, 15)) == 1
    assert service.sweep_overdue(admin, today=date(2024, 3, 15)) == 0

    assert db.get(Installment, first).status == "overdue"
    assert db.get(Installment, second).status == "partial"


def test_overdue_installment_can_still_be_paid(db, admin, plan):
    service = PlanService(db)
    first = plan.installments[0].id
    service.sweep_overdue(admin, today=date(2024, 2, 10))

    assert service.record_payment(admin, first, 100000).status == "paid"


def test_list_installments_filters(db, admin, plan):
    service = PlanService(db)
    today = date(2024, 2, 25)

    overdue = service.list_installments(admin.organization_id, overdue=True, today=today)
    upcoming = service.list_installments(admin.organization_id, upcoming=True, today=today)
    pending = service.list_installments(admin.organization_id, status="pending")

    assert [i.due_date for i in overdue] == [date(2024, 2, 1)]
    assert [i.due_date for i in upcoming] == [date(2024, 3, 1)]
    assert len(pending) == 3

    with pytest.raises(ValidationError):
        service.list_installments(admin.organization_id, status="cancelled")


def test_plan_summary(db, admin, plan):
    service = PlanService(db)
    service.record_payment(admin, plan.installments[1].id, 50000)

    summary = service.plan_summary(admin.organization_id, today=date(2024, 2, 25))

    assert summary.active_plans == 1
    assert summary.overdue_installments == 1
    assert summary.upcoming_installments == 1
    assert summary.total_expected_cents == 300000
    assert summary.total_collected_cents == 50000


def test_reminder_sets_flag_after_delivery(db, admin, plan):
    calls = []
    installment_id = plan.installments[0].id

    inst = asyncio.run(PlanService(db).send_reminder(admin, installment_id, sms_client(calls=calls)))

    assert inst.reminder_sent is True
    assert inst.reminder_sent_at is not None
    assert calls[0].url.params["number"] == "256772123456"
    assert "installment #1 of Term 1 Plan (UGX 100,000)" in calls[0].url.params["message"]


def test_rejected_reminder_leaves_flag_unset(db, admin, plan):
    installment_id = plan.installments[0].id

    with pytest.raises(MessagingError):
        asyncio.run(PlanService(db).send_reminder(admin, installment_id, sms_client(body="Failed: low balance")))

    assert db.get(Installment, installment_id).reminder_sent is False


def test_gateway_error_leaves_flag_unset(db, admin, plan):
    installment_id = plan.installments[0].id

    with pytest.raises(MessagingError):
        asyncio.run(PlanService(db).send_reminder(admin, installment_id, sms_client(status_code=503)))

    assert db.get(Installment, installment_id).reminder_sent is False


def test_reminder_needs_parent_phone(db, school, admin, template):
    plan = PlanService(db).assign_plan(admin, school["no_phone"].id, template.id, [date.today() + timedelta(days=3)])

    with pytest.raises(ValidationError):
        asyncio.run(PlanService(db).send_reminder(admin, plan.installments[0].id, sms_client()))

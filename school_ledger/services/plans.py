"""Installment engine: payment plan templates, enrolment, payments and reminders"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
from school_ledger.config import settings
from school_ledger.domain.exceptions import ConflictError, MessagingError, NotFoundError, ValidationError
from school_ledger.domain.installments import (
    compose_reminder,
    plan_is_complete,
    remaining_cents,
    split_installments,
    status_after_payment,
)
from school_ledger.domain.models import AuditAction, CallerIdentity, InstallmentStatus, PlanStatus, PlanSummary
from school_ledger.infrastructure.clients.messaging import SmsClient
from school_ledger.infrastructure.database.models import Installment, PaymentPlanTemplate, StudentPaymentPlan
from school_ledger.infrastructure.database.repositories import PlanRepository, ReferenceRepository
from school_ledger.infrastructure.database.session import unit_of_work
from school_ledger.infrastructure.observability.logging import log_installment_event
from school_ledger.infrastructure.observability.metrics import (
    overdue_transition_counter,
    record_installment_payment,
    reminder_counter,
)
from school_ledger.services.audit import AuditSink
from school_ledger.services.balances import BalanceService
from school_ledger.utils.date_utils import add_days

logger = logging.getLogger(__name__)

# Installments that still expect money
OPEN_STATUSES = [InstallmentStatus.PENDING.value, InstallmentStatus.PARTIAL.value, InstallmentStatus.OVERDUE.value]


class PlanService:
    """Payment plans and their installment schedules for one database session"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PlanRepository(db)
        self.refs = ReferenceRepository(db)
        self.balances = BalanceService(db)

    # Templates

    def create_template(
        self,
        identity: CallerIdentity,
        name: str,
        total_cents: int,
        installment_count: int,
        term_id=None,
    ) -> PaymentPlanTemplate:
        name = (name or "").strip()
        if not name or not total_cents or total_cents <= 0 or not installment_count or installment_count < 1:
            raise ValidationError("Name, total amount, and installments required")
        if term_id is not None and self.refs.get_term(identity.organization_id, term_id) is None:
            raise NotFoundError("Term not found")

        with unit_of_work(self.db, "create_plan_template"):
            template = self.repo.add_template(
                PaymentPlanTemplate(
                    organization_id=identity.organization_id,
                    name=name,
                    total_cents=total_cents,
                    installment_count=installment_count,
                    term_id=term_id,
                    created_by_id=identity.user_id,
                )
            )

        AuditSink(self.db).record(
            identity,
            AuditAction.CREATE,
            "payment_plan",
            template.id,
            f"Created payment plan: {name}",
            new_values={"name": name, "total_cents": total_cents, "installment_count": installment_count},
        )
        return template

    def list_templates(self, organization_id) -> List[Tuple[PaymentPlanTemplate, int]]:
        return self.repo.list_templates(organization_id)

    def delete_template(self, identity: CallerIdentity, template_id) -> None:
        """Templates with enrolled students cannot be removed"""
        template = self.repo.get_template(identity.organization_id, template_id)
        if template is None:
            raise NotFoundError("Payment plan not found")

        enrolled = self.repo.count_enrolments(template.id)
        if enrolled > 0:
            raise ConflictError(f"Cannot delete: {enrolled} students enrolled in this plan")

        name = template.name
        with unit_of_work(self.db, "delete_plan_template"):
            self.repo.delete_template(template)

        AuditSink(self.db).record(
            identity, AuditAction.DELETE, "payment_plan", template_id, f"Deleted payment plan: {name}"
        )

    # Enrolment

    def assign_plan(
        self,
        identity: CallerIdentity,
        student_id,
        template_id,
        due_dates: Sequence[date],
        custom_amount_cents: Optional[int] = None,
    ) -> StudentPaymentPlan:
        """
        Enrol a student in a plan and lay out the installment schedule.

        Requirements:
        - One installment per due date, in the order given
        - Each installment is total // len(due_dates)
        - A student is enrolled at most once per template

        Raises:
            ValidationError: No due dates, or a non-positive custom amount
            NotFoundError: Unknown template or student
            ConflictError: Student already on this plan
        """
        org_id = identity.organization_id
        if not due_dates:
            raise ValidationError("Student, plan, and due dates required")
        if custom_amount_cents is not None and custom_amount_cents <= 0:
            raise ValidationError("Custom amount must be greater than zero")

        template = self.repo.get_template(org_id, template_id)
        if template is None:
            raise NotFoundError("Payment plan not found")
        if self.refs.get_student(org_id, student_id) is None:
            raise NotFoundError("Student not found")
        if self.repo.find_enrolment(student_id, template.id) is not None:
            raise ConflictError("Student is already enrolled in this plan")

        total = custom_amount_cents if custom_amount_cents is not None else template.total_cents
        schedule = split_installments(total, due_dates)

        with unit_of_work(self.db, "assign_plan"):
            plan = self.repo.create_plan(org_id, student_id, template.id, total, schedule)

        log_installment_event(
            "plan_assigned",
            org_id,
            None,
            plan_id=str(plan.id),
            student_id=str(student_id),
            total_cents=total,
            installment_count=len(schedule),
        )
        AuditSink(self.db).record(
            identity,
            AuditAction.CREATE,
            "student_payment_plan",
            plan.id,
            f"Assigned payment plan {template.name}",
            new_values={"student_id": str(student_id), "template_id": str(template.id), "total_cents": total},
        )
        return plan

    def get_student_plans(self, organization_id, student_id) -> List[StudentPaymentPlan]:
        if self.refs.get_student(organization_id, student_id) is None:
            raise NotFoundError("Student not found")
        return self.repo.get_student_plans(organization_id, student_id)

    # Payments

    def record_payment(self, identity: CallerIdentity, installment_id, amount_cents: int) -> Installment:
        """
        Apply a payment to an installment.

        Flow:
        1. Lock the parent plan row
        2. Add the amount to paid-to-date (in-database delta)
        3. Recompute status: partial below the amount due, paid at or above it
        4. Credit the student's balance for the template's term, if it has one
        5. Complete the plan once every installment is paid

        All steps share one transaction. Overpayment is accepted.
        """
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("Valid amount required")

        org_id = identity.organization_id
        installment = self.repo.get_installment(org_id, installment_id)
        if installment is None:
            raise NotFoundError("Installment not found")

        plan_completed = False
        with unit_of_work(self.db, "record_installment_payment"):
            # 1. Lock; payments on the same plan then see each other's status in step 5
            plan = self.repo.lock_plan(installment.plan_id)

            # 2. Delta
            installment = self.repo.add_paid(installment, amount_cents)

            # 3. Status
            new_status = status_after_payment(installment.amount_cents, installment.paid_cents)
            installment.status = new_status.value
            if new_status == InstallmentStatus.PAID and installment.paid_at is None:
                installment.paid_at = datetime.now(timezone.utc)
            self.db.flush()

            # 4. Balance
            term_id = plan.template.term_id
            if term_id is not None:
                self.balances.increment(org_id, plan.student_id, term_id, amount_cents)

            # 5. Completion
            statuses = [InstallmentStatus(s) for s in self.repo.plan_statuses(plan.id)]
            if plan.status != PlanStatus.COMPLETED.value and plan_is_complete(statuses):
                self.repo.complete_plan(plan.id, datetime.now(timezone.utc))
                plan_completed = True

        record_installment_payment(new_status.value, plan_completed)
        log_installment_event(
            "payment_recorded",
            org_id,
            installment.id,
            amount_cents=amount_cents,
            status=new_status.value,
            remaining_cents=remaining_cents(installment.amount_cents, installment.paid_cents),
            plan_completed=plan_completed,
        )
        AuditSink(self.db).record(
            identity,
            AuditAction.PAYMENT,
            "installment",
            installment.id,
            f"Installment #{installment.sequence} payment of {amount_cents}",
            new_values={"paid_cents": installment.paid_cents, "status": new_status.value},
        )
        return installment

    def sweep_overdue(self, identity: CallerIdentity, today: Optional[date] = None) -> int:
        """Move pending installments past their due date to overdue; returns how many moved"""
        today = today or date.today()
        with unit_of_work(self.db, "sweep_overdue"):
            count = self.repo.sweep_overdue(identity.organization_id, today)

        overdue_transition_counter.inc(count)
        log_installment_event("overdue_sweep", identity.organization_id, None, transitioned=count, as_of=today.isoformat())
        if count:
            AuditSink(self.db).record(
                identity,
                AuditAction.SWEEP,
                "installment",
                None,
                f"Updated {count} installments to overdue",
            )
        return count

    # Reminders

    async def send_reminder(self, identity: CallerIdentity, installment_id, sms_client: SmsClient) -> Installment:
        """
        Text the parent about an upcoming or overdue installment.

        The reminder flag is only set after the gateway reports success, in a
        transaction of its own. A rejected message raises MessagingError and
        leaves the installment untouched.
        """
        org_id = identity.organization_id
        installment = self.repo.get_installment(org_id, installment_id)
        if installment is None:
            raise NotFoundError("Installment not found")

        plan = installment.plan
        student = plan.student
        if not student.parent_phone:
            raise ValidationError("No phone number for this student")

        message = compose_reminder(
            student.full_name,
            installment.sequence,
            plan.template.name,
            remaining_cents(installment.amount_cents, installment.paid_cents),
            installment.due_date,
            settings.currency_label,
        )

        try:
            result = await sms_client.send(student.parent_phone, message)
        except MessagingError:
            reminder_counter.labels(outcome="failed").inc()
            raise

        if not result.success:
            reminder_counter.labels(outcome="failed").inc()
            logger.warning(
                "SMS gateway rejected reminder",
                extra={"installment_id": str(installment.id), "detail": result.detail},
            )
            raise MessagingError(f"SMS gateway rejected the message: {result.detail}")

        with unit_of_work(self.db, "mark_reminder_sent"):
            self.repo.mark_reminder_sent(installment.id, datetime.now(timezone.utc))
        self.db.refresh(installment)

        reminder_counter.labels(outcome="sent").inc()
        log_installment_event("reminder_sent", org_id, installment.id, student_id=str(student.id))
        AuditSink(self.db).record(
            identity,
            AuditAction.REMINDER,
            "installment",
            installment.id,
            f"Reminder sent for installment #{installment.sequence}",
        )
        return installment

    # Queries

    def list_installments(
        self,
        organization_id,
        status: Optional[str] = None,
        overdue: bool = False,
        upcoming: bool = False,
        today: Optional[date] = None,
    ) -> List[Installment]:
        """
        Installments ordered by due date.

        overdue: still owing and past due (whether or not the sweep has run)
        upcoming: pending or partial, due within the configured window
        """
        if status is not None:
            try:
                status = InstallmentStatus(status).value
            except ValueError:
                raise ValidationError(f"Unknown installment status: {status}")

        today = today or date.today()
        if overdue:
            return self.repo.list_installments(organization_id, status=status, statuses=OPEN_STATUSES, due_before=today)
        if upcoming:
            window = (today, add_days(today, settings.upcoming_window_days))
            return self.repo.list_installments(
                organization_id,
                status=status,
                statuses=[InstallmentStatus.PENDING.value, InstallmentStatus.PARTIAL.value],
                due_between=window,
            )
        return self.repo.list_installments(organization_id, status=status)

    def plan_summary(self, organization_id, today: Optional[date] = None) -> PlanSummary:
        today = today or date.today()
        expected, collected = self.repo.installment_totals(organization_id)
        return PlanSummary(
            active_plans=self.repo.count_active_plans(organization_id),
            overdue_installments=len(self.list_installments(organization_id, overdue=True, today=today)),
            upcoming_installments=len(self.list_installments(organization_id, upcoming=True, today=today)),
            total_expected_cents=expected,
            total_collected_cents=collected,
        )

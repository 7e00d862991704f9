"""/v1/payment-plans and /v1/installments - installment plans, payments and reminders"""

import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.dependencies import get_sms_client, require
from school_ledger.api.v1.schemas import (
    AssignPlanRequest,
    Envelope,
    InstallmentPaymentRequest,
    InstallmentSchema,
    MessageResponse,
    PlanSummaryResponse,
    PlanTemplateRequest,
    PlanTemplateResponse,
    StudentPlanResponse,
    SweepResponse,
)
from school_ledger.domain.models import CallerIdentity
from school_ledger.domain.permissions import Action, Module
from school_ledger.infrastructure.clients.messaging import SmsClient
from school_ledger.infrastructure.database.models import StudentPaymentPlan
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.plans import PlanService

router = APIRouter()


def plan_response(plan: StudentPaymentPlan) -> StudentPlanResponse:
    return StudentPlanResponse(
        id=plan.id,
        student_id=plan.student_id,
        template_id=plan.template_id,
        plan_name=plan.template.name,
        total_cents=plan.total_cents,
        status=plan.status,
        completed_at=plan.completed_at,
        installments=[InstallmentSchema.model_validate(inst) for inst in plan.installments],
    )


@router.post("/payment-plans", response_model=Envelope[PlanTemplateResponse], status_code=201)
def create_payment_plan(
    body: PlanTemplateRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.CREATE)),
):
    template = PlanService(db).create_template(identity, body.name, body.total_cents, body.installment_count, body.term_id)
    return Envelope(
        data=PlanTemplateResponse(
            id=template.id,
            name=template.name,
            total_cents=template.total_cents,
            installment_count=template.installment_count,
            term_id=template.term_id,
        )
    )


@router.get("/payment-plans", response_model=Envelope[List[PlanTemplateResponse]])
def list_payment_plans(
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.VIEW)),
):
    rows = PlanService(db).list_templates(identity.organization_id)
    return Envelope(
        data=[
            PlanTemplateResponse(
                id=t.id,
                name=t.name,
                total_cents=t.total_cents,
                installment_count=t.installment_count,
                term_id=t.term_id,
                enrolled_count=count,
            )
            for t, count in rows
        ]
    )


@router.get("/payment-plans/summary", response_model=Envelope[PlanSummaryResponse])
def get_plan_summary(
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.VIEW)),
):
    summary = PlanService(db).plan_summary(identity.organization_id)
    return Envelope(data=PlanSummaryResponse(**summary.__dict__))


@router.get("/payment-plans/student/{student_id}", response_model=Envelope[List[StudentPlanResponse]])
def get_student_plans(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.VIEW)),
):
    plans = PlanService(db).get_student_plans(identity.organization_id, student_id)
    return Envelope(data=[plan_response(p) for p in plans])


@router.post("/payment-plans/assign", response_model=Envelope[StudentPlanResponse], status_code=201)
def assign_plan_to_student(
    body: AssignPlanRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.CREATE)),
):
    """
    Enrol a student and generate one installment per due date.

    Returns:
        The student's plan with its installment schedule
    """
    plan = PlanService(db).assign_plan(
        identity, body.student_id, body.plan_id, body.due_dates, body.custom_amount_cents
    )
    return Envelope(data=plan_response(plan))


@router.delete("/payment-plans/{plan_id}", response_model=Envelope[MessageResponse])
def delete_payment_plan(
    plan_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.DELETE)),
):
    PlanService(db).delete_template(identity, plan_id)
    return Envelope(data=MessageResponse(message="Payment plan deleted"))


@router.get("/installments", response_model=Envelope[List[InstallmentSchema]])
def list_installments(
    status: Optional[str] = None,
    overdue: bool = False,
    upcoming: bool = False,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.VIEW)),
):
    installments = PlanService(db).list_installments(
        identity.organization_id, status=status, overdue=overdue, upcoming=upcoming
    )
    return Envelope(data=[InstallmentSchema.model_validate(i) for i in installments])


@router.post("/installments/update-overdue", response_model=Envelope[SweepResponse])
def sweep_overdue_installments(
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.EDIT)),
):
    count = PlanService(db).sweep_overdue(identity)
    return Envelope(data=SweepResponse(updated=count, message=f"Updated {count} installments to overdue"))


@router.post("/installments/{installment_id}/pay", response_model=Envelope[InstallmentSchema])
def record_installment_payment(
    installment_id: uuid.UUID,
    body: InstallmentPaymentRequest,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.CREATE)),
):
    installment = PlanService(db).record_payment(identity, installment_id, body.amount_cents)
    return Envelope(data=InstallmentSchema.model_validate(installment))


@router.post("/installments/{installment_id}/remind", response_model=Envelope[InstallmentSchema])
async def send_installment_reminder(
    installment_id: uuid.UUID,
    db: Session = Depends(get_db),
    identity: CallerIdentity = Depends(require(Module.PLANS, Action.EDIT)),
    sms_client: SmsClient = Depends(get_sms_client),
):
    """SMS the parent; the installment is only flagged once the gateway accepts the message"""
    installment = await PlanService(db).send_reminder(identity, installment_id, sms_client)
    return Envelope(data=InstallmentSchema.model_validate(installment))

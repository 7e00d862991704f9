"""Validation rules for income and expense ledger entries"""

from typing import Optional
from school_ledger.domain.exceptions import ValidationError
from school_ledger.domain.models import EntryChanges, EntryDraft, EntryKind, PaymentMethod

MAX_DESCRIPTION_LENGTH = 500


def _check_description(description: Optional[str]) -> str:
    description = (description or "").strip()
    if not description:
        raise ValidationError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError("Description too long")
    return description


def _check_amount(amount_cents: Optional[int]) -> int:
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("Amount must be greater than 0")
    return amount_cents


def _check_payment_method(kind: EntryKind, payment_method: Optional[str]) -> Optional[str]:
    if payment_method is None:
        if kind == EntryKind.INCOME:
            raise ValidationError("Payment method is required")
        return None
    try:
        return PaymentMethod(payment_method).value
    except ValueError:
        raise ValidationError(f"Invalid payment method: {payment_method}")


def validate_draft(kind: EntryKind, draft: EntryDraft) -> EntryDraft:
    """
    Check a new entry and return it with normalized fields.

    Requirements:
    - date, non-blank description (max 500 chars), positive amount
    - income needs a known payment method; expense may carry one
    - student/term references are income-only
    """
    if draft.entry_date is None:
        raise ValidationError("Date is required")

    draft.description = _check_description(draft.description)
    _check_amount(draft.amount_cents)
    draft.payment_method = _check_payment_method(kind, draft.payment_method)

    if kind == EntryKind.EXPENSE and (draft.student_id or draft.term_id):
        raise ValidationError("Expenses cannot reference a student or term")

    return draft


def validate_changes(kind: EntryKind, changes: EntryChanges) -> EntryChanges:
    """Apply the same field rules to the fields an amendment sets"""
    if changes.description is not None:
        changes.description = _check_description(changes.description)
    if changes.amount_cents is not None:
        _check_amount(changes.amount_cents)
    if changes.payment_method is not None:
        changes.payment_method = _check_payment_method(kind, changes.payment_method)
    return changes


def validate_void_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Void reason is required")
    return reason

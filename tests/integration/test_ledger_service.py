"""Integration tests for recording, amending and voiding ledger entries"""

import uuid
import pytest
from datetime import date
from sqlalchemy.orm import sessionmaker
from school_ledger.domain.exceptions import AlreadyVoidedError, InvalidStateError, NotFoundError
from school_ledger.domain.models import EntryChanges, EntryDraft, EntryKind
from school_ledger.infrastructure.database.models import AuditLog, IncomeEntry, StudentBalance
from school_ledger.services.balances import BalanceService
from school_ledger.services.ledger import LedgerService


def fee_draft(amount_cents: int = 500000, **overrides) -> EntryDraft:
    fields = dict(
        entry_date=date(2024, 2, 5),
        description="Term 1 fees",
        amount_cents=amount_cents,
        payment_method="mobile_money",
    )
    fields.update(overrides)
    return EntryDraft(**fields)


def test_fee_payment_credits_balance(db, school, admin):
    """Income tagged with student+term raises amount paid by exactly the amount"""
    student, term = school["student"], school["term1"]
    ledger = LedgerService(db)

    entry = ledger.record_student_payment(admin, student.id, term.id, fee_draft(500000))

    balance = BalanceService(db).get_balance(admin.organization_id, student.id, term.id)
    assert balance.amount_paid_cents == 500000
    assert entry.receipt_number == 1
    assert entry.receipt_code == "QMJS0001"


def test_receipt_numbers_increase_and_are_never_reused(db, school, admin):
    ledger = LedgerService(db)

    first = ledger.create_income(admin, fee_draft(1000))
    ledger.void_entry(admin, EntryKind.INCOME, first.id, "duplicate")
    second = ledger.create_income(admin, fee_draft(2000))

    assert first.receipt_number == 1
    assert second.receipt_number == 2
    assert second.receipt_code == "QMJS0002"


def test_void_restores_prior_balance(db, school, admin):
    student, term = school["student"], school["term1"]
    ledger = LedgerService(db)
    balances = BalanceService(db)

    ledger.record_student_payment(admin, student.id, term.id, fee_draft(300000))
    second = ledger.record_student_payment(admin, student.id, term.id, fee_draft(200000))
    assert balances.get_balance(admin.organization_id, student.id, term.id).amount_paid_cents == 500000

    voided = ledger.void_entry(admin, EntryKind.INCOME, second.id, "Cheque bounced")

    assert balances.get_balance(admin.organization_id, student.id, term.id).amount_paid_cents == 300000
    assert voided.is_voided
    assert voided.void_reason == "Cheque bounced"
    assert voided.voided_by_id == admin.user_id
    assert voided.amount_cents == 200000  # amount is never touched by a void


def test_voided_entry_cannot_change(db, school, admin):
    ledger = LedgerService(db)
    entry = ledger.create_expense(admin, fee_draft(50000, payment_method=None, description="Printer ink"))
    ledger.void_entry(admin, EntryKind.EXPENSE, entry.id, "Wrong school")

    with pytest.raises(AlreadyVoidedError):
        ledger.amend_entry(admin, EntryKind.EXPENSE, entry.id, EntryChanges(description="Toner"))
    with pytest.raises(AlreadyVoidedError):
        ledger.void_entry(admin, EntryKind.EXPENSE, entry.id, "again")


def test_already_voided_is_an_invalid_state():
    assert issubclass(AlreadyVoidedError, InvalidStateError)


def test_void_without_balance_rolls_back(db, school, admin):
    """A reversal with nothing to reverse leaves the entry untouched"""
    student, term = school["student"], school["term1"]
    ledger = LedgerService(db)
    entry = ledger.record_student_payment(admin, student.id, term.id, fee_draft(100000))
    entry_id = entry.id

    db.query(StudentBalance).delete()
    db.commit()

    with pytest.raises(InvalidStateError):
        ledger.void_entry(admin, EntryKind.INCOME, entry_id, "mistake")

    assert db.get(IncomeEntry, entry_id).is_voided is False


def test_amending_amount_leaves_balance_alone(db, school, admin):
    student, term = school["student"], school["term1"]
    ledger = LedgerService(db)
    entry = ledger.record_student_payment(admin, student.id, term.id, fee_draft(100000))

    amended = ledger.amend_entry(admin, EntryKind.INCOME, entry.id, EntryChanges(amount_cents=150000))

    assert amended.amount_cents == 150000
    balance = BalanceService(db).get_balance(admin.organization_id, student.id, term.id)
    assert balance.amount_paid_cents == 100000


def test_references_must_belong_to_organization(db, school, admin):
    ledger = LedgerService(db)

    with pytest.raises(NotFoundError):
        ledger.record_student_payment(admin, school["outsider"].id, school["term1"].id, fee_draft())
    with pytest.raises(NotFoundError):
        # An expense category cannot classify income
        ledger.create_income(admin, fee_draft(category_id=school["utilities"].id))
    with pytest.raises(NotFoundError):
        ledger.get_entry(admin.organization_id, EntryKind.INCOME, uuid.uuid4())


def test_list_excludes_voided_by_default(db, school, admin):
    ledger = LedgerService(db)
    kept = ledger.create_income(admin, fee_draft(1000))
    dropped = ledger.create_income(admin, fee_draft(2000))
    ledger.void_entry(admin, EntryKind.INCOME, dropped.id, "duplicate")

    items, total = ledger.list_entries(admin.organization_id, EntryKind.INCOME)
    assert total == 1
    assert items[0].id == kept.id

    _, total_with_voided = ledger.list_entries(admin.organization_id, EntryKind.INCOME, include_voided=True)
    assert total_with_voided == 2


def test_verify_receipt(db, school, admin):
    ledger = LedgerService(db)
    entry = ledger.record_student_payment(admin, school["student"].id, school["term1"].id, fee_draft(75000))

    details = ledger.verify_receipt(entry.receipt_code.lower())
    assert details["status"] == "valid"
    assert details["student_name"] == "Amina Nakato"
    assert details["school"] == "Queen Mary Junior School"

    ledger.void_entry(admin, EntryKind.INCOME, entry.id, "refund")
    assert ledger.verify_receipt(entry.receipt_code)["status"] == "voided"

    with pytest.raises(NotFoundError):
        ledger.verify_receipt("QMJS9999")


def test_changes_are_audited(db, school, admin):
    ledger = LedgerService(db)
    entry = ledger.create_income(admin, fee_draft(1000))
    ledger.void_entry(admin, EntryKind.INCOME, entry.id, "duplicate")

    actions = [log.action for log in db.query(AuditLog).filter(AuditLog.entity_id == str(entry.id))]
    assert sorted(actions) == ["CREATE", "VOID"]


def test_void_from_a_stale_session_reverses_only_once(db, school, admin):
    """Two voids that both saw the entry live: the second is refused and the balance drops once"""
    student, term = school["student"], school["term1"]
    ledger = LedgerService(db)
    ledger.record_student_payment(admin, student.id, term.id, fee_draft(300000))
    entry = ledger.record_student_payment(admin, student.id, term.id, fee_draft(200000))
    db.commit()

    other = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())()
    try:
        late = LedgerService(other)
        assert late.get_entry(admin.organization_id, EntryKind.INCOME, entry.id).is_voided is False

        ledger.void_entry(admin, EntryKind.INCOME, entry.id, "Duplicate")

        with pytest.raises(AlreadyVoidedError):
            late.void_entry(admin, EntryKind.INCOME, entry.id, "Duplicate")
    finally:
        other.close()

    balance = BalanceService(db).get_balance(admin.organization_id, student.id, term.id)
    assert balance.amount_paid_cents == 300000


def test_amend_from_a_stale_session_after_void_is_refused(db, school, admin):
    ledger = LedgerService(db)
    entry = ledger.create_income(admin, fee_draft(1000))
    db.commit()

    other = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())()
    try:
        late = LedgerService(other)
        late.get_entry(admin.organization_id, EntryKind.INCOME, entry.id)

        ledger.void_entry(admin, EntryKind.INCOME, entry.id, "Entered twice")

        with pytest.raises(AlreadyVoidedError):
            late.amend_entry(admin, EntryKind.INCOME, entry.id, EntryChanges(description="Changed"))
    finally:
        other.close()

    db.expire_all()
    assert db.get(IncomeEntry, entry.id).description == "Term 1 fees"

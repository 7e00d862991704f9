"""GET /v1/receipts/{receipt_code} - public receipt verification"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from school_ledger.api.v1.schemas import Envelope, ReceiptVerificationResponse
from school_ledger.infrastructure.database.session import get_db
from school_ledger.services.ledger import LedgerService

router = APIRouter()


@router.get("/receipts/{receipt_code}", response_model=Envelope[ReceiptVerificationResponse])
def verify_receipt(receipt_code: str, db: Session = Depends(get_db)):
    """
    Confirm a printed receipt was issued. No identity is required, so
    anyone holding a receipt (e.g. a parent) can check it.

    Returns:
        Receipt details with status "valid" or "voided"; 404 envelope for unknown codes
    """
    details = LedgerService(db).verify_receipt(receipt_code)
    return Envelope(data=ReceiptVerificationResponse(**details))

"""Domain-specific exceptions"""

from enum import Enum


class ErrorKind(str, Enum):
    """Typed error kinds reported to callers in the failure envelope"""

    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFoundError"
    INVALID_STATE = "InvalidStateError"
    ALREADY_VOIDED = "AlreadyVoidedError"
    CONFLICT = "ConflictError"
    PERMISSION_DENIED = "PermissionDenied"
    UNAUTHENTICATED = "Unauthenticated"
    MESSAGING = "MessagingError"
    TRANSACTION_FAILURE = "TransactionFailure"


class DomainException(Exception):
    """Base exception for domain layer"""

    kind: ErrorKind = ErrorKind.TRANSACTION_FAILURE
    status_code: int = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(DomainException):
    """Missing or malformed input"""

    kind = ErrorKind.VALIDATION
    status_code = 422


class NotFoundError(DomainException):
    """Entity absent or outside the caller's organization"""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class InvalidStateError(DomainException):
    """Operation not allowed given the entity's current state"""

    kind = ErrorKind.INVALID_STATE
    status_code = 409


class AlreadyVoidedError(InvalidStateError):
    """Ledger entry has been voided and can no longer change"""

    kind = ErrorKind.ALREADY_VOIDED


class ConflictError(DomainException):
    """Operation collides with existing records (e.g. enrolments on a plan)"""

    kind = ErrorKind.CONFLICT
    status_code = 409


class PermissionDeniedError(DomainException):
    """Caller's role lacks the capability for this operation"""

    kind = ErrorKind.PERMISSION_DENIED
    status_code = 403


class AuthenticationError(DomainException):
    """Identity context missing or malformed"""

    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401


class MessagingError(DomainException):
    """SMS gateway rejected the message or is unavailable"""

    kind = ErrorKind.MESSAGING
    status_code = 502


class TransactionFailure(DomainException):
    """Storage failed mid unit of work; everything was rolled back"""

    kind = ErrorKind.TRANSACTION_FAILURE
    status_code = 500

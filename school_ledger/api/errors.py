"""Exception handlers rendering every failure as the standard error envelope"""

import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from school_ledger.domain.exceptions import DomainException, ErrorKind

logger = logging.getLogger(__name__)


def error_response(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"kind": kind.value, "message": message}},
    )


def _describe(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        request_id = getattr(request.state, "request_id", "unknown")
        if exc.status_code >= 500:
            logger.error(f"{exc.kind.value}: {exc.message}", extra={"request_id": request_id})
        else:
            logger.warning(f"{exc.kind.value}: {exc.message}", extra={"request_id": request_id})
        return error_response(exc.status_code, exc.kind, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(422, ErrorKind.VALIDATION, _describe(exc))

    @app.exception_handler(Exception)
    async def unexpected_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(f"Unexpected error: {exc}", extra={"request_id": request_id})
        return error_response(500, ErrorKind.TRANSACTION_FAILURE, "Internal server error")

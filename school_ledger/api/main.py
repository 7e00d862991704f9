"""FastAPI application factory"""

from fastapi import Depends, FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.responses import Response

from school_ledger.api.errors import register_exception_handlers
from school_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from school_ledger.api.v1 import budgets, expenses, income, plans, receipts, students
from school_ledger.infrastructure.observability.logging import setup_logging
from school_ledger.infrastructure.database.session import get_db
from school_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="School Ledger",
        description="Fee ledger, student balances, installment plans and budgets",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Health check endpoint; also proves the database answers
    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        db.execute(text("SELECT 1"))
        return {"status": "ok", "service": settings.service_name, "database": "ok"}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(income.router, prefix="/v1", tags=["income"])
    app.include_router(expenses.router, prefix="/v1", tags=["expenses"])
    app.include_router(students.router, prefix="/v1", tags=["students"])
    app.include_router(plans.router, prefix="/v1", tags=["payment-plans"])
    app.include_router(budgets.router, prefix="/v1", tags=["budgets"])
    app.include_router(receipts.router, prefix="/v1", tags=["receipts"])

    return app


app = create_app()

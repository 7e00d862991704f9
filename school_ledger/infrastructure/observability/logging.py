"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from school_ledger.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_ledger_event(
    step: str,
    organization_id: Any,
    entity_type: str,
    entity_id: Any,
    amount_cents: int | None = None,
    **fields: Any,
) -> None:
    """Log structured ledger outcome (create / amend / void) for analysis"""
    logging.getLogger("school_ledger.ledger").info(
        "Ledger %s",
        step,
        extra={
            "step": step,
            "organization_id": str(organization_id),
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "amount_cents": amount_cents,
            **fields,
        },
    )


def log_installment_event(step: str, organization_id: Any, installment_id: Any, **fields: Any) -> None:
    """Log structured installment engine outcome"""
    logging.getLogger("school_ledger.installments").info(
        "Installment %s",
        step,
        extra={
            "step": step,
            "organization_id": str(organization_id),
            "installment_id": str(installment_id) if installment_id is not None else None,
            **fields,
        },
    )

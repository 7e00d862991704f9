"""Audit trail of changes to financial records"""

import logging
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from school_ledger.domain.models import AuditAction, CallerIdentity
from school_ledger.infrastructure.database.models import AuditLog
from school_ledger.infrastructure.database.repositories import AuditRepository

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, date, datetime)):
        return value.isoformat() if not isinstance(value, uuid.UUID) else str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def snapshot(entity: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """JSON-safe copy of the named attributes of an entity"""
    return {name: _jsonable(getattr(entity, name, None)) for name in fields}


class AuditSink:
    """
    Records who changed what.

    Called after the business transaction has committed, so an audit failure
    is logged and dropped; it never undoes the change it describes.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = AuditRepository(db)

    def record(
        self,
        identity: CallerIdentity,
        action: AuditAction,
        entity_type: str,
        entity_id: Any = None,
        description: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            self.repo.add(
                AuditLog(
                    organization_id=identity.organization_id,
                    actor_id=identity.user_id,
                    actor_name=identity.display_name,
                    actor_role=identity.role,
                    action=action.value,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    description=description,
                    old_values=old_values,
                    new_values=new_values,
                )
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                "Audit write failed",
                extra={
                    "audit_action": action.value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id) if entity_id is not None else None,
                },
            )

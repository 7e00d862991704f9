"""Dependency injection for FastAPI endpoints"""

import uuid
from fastapi import Depends, Header, Request
from school_ledger.domain.exceptions import AuthenticationError
from school_ledger.domain.models import CallerIdentity
from school_ledger.domain.permissions import Action, Module, ensure_allowed
from school_ledger.infrastructure.clients.messaging import SmsClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_identity(
    x_organization_id: str | None = Header(None),
    x_user_id: str | None = Header(None),
    x_user_name: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> CallerIdentity:
    """
    Caller identity as forwarded by the upstream gateway.

    Raises:
        AuthenticationError: Any header missing, or an id that is not a UUID
    """
    if not x_organization_id or not x_user_id or not x_user_role:
        raise AuthenticationError("Access denied. No identity provided.")
    try:
        organization_id = uuid.UUID(x_organization_id)
        user_id = uuid.UUID(x_user_id)
    except ValueError:
        raise AuthenticationError("Invalid identity headers")

    return CallerIdentity(
        organization_id=organization_id,
        user_id=user_id,
        display_name=x_user_name or "",
        role=x_user_role,
    )


def require(module: Module, action: Action):
    """Dependency that resolves the caller and checks one capability"""

    def checker(identity: CallerIdentity = Depends(get_identity)) -> CallerIdentity:
        ensure_allowed(identity.role, module, action)
        return identity

    return checker


def get_sms_client() -> SmsClient:
    """Provide SMS gateway client instance"""
    return SmsClient()

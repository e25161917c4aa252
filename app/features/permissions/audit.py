"""
Audit logging helpers.

Audit rows are added to the caller's session and committed together with the
change they describe.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.features.permissions.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class AuditActor:
    """Who performed an administrative change, and from where."""
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request, user_id: Optional[str]) -> "AuditActor":
        return cls(
            user_id=user_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )


async def create_audit_log(
    db: AsyncSession,
    actor: Optional[AuditActor],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        actor: User performing the action (None for scripts)
        action: Action performed (e.g., "create", "update", "delete", "grant")
        resource_type: Type of resource (e.g., "role", "member", "project_access")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details

    Returns:
        The pending AuditLog object
    """
    actor = actor or AuditActor()
    audit_log = AuditLog(
        user_id=actor.user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
    )
    db.add(audit_log)

    log.info(
        "Audit: user=%s action=%s resource=%s:%s org=%s",
        actor.user_id, action, resource_type, resource_id, organization_id,
    )
    return audit_log

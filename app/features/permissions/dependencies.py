"""
Permission feature dependency injection functions.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.access.context import AccessContext
from app.features.access.dependencies import get_access_context
from app.features.permissions.audit import AuditActor
from app.features.permissions.service import PermissionService, RoleService


async def get_permission_service(db: AsyncSession = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


async def get_role_service(db: AsyncSession = Depends(get_db)) -> RoleService:
    return RoleService(db)


async def get_audit_actor(
    request: Request,
    context: AccessContext = Depends(get_access_context),
) -> AuditActor:
    """Actor recorded on audit entries for the current request."""
    return AuditActor.from_request(request, context.user_id)

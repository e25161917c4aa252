"""
Permission catalog and role management API routes.
"""
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status

from app.core.responses import page_count
from app.features.access.catalog import Action, Resource
from app.features.access.context import AccessContext
from app.features.access.dependencies import get_access_context
from app.features.access.guards import require_permission
from app.features.permissions.audit import AuditActor
from app.features.permissions.dependencies import (
    get_audit_actor,
    get_permission_service,
    get_role_service,
)
from app.features.permissions.models import Role
from app.features.permissions.schemas import (
    PermissionResponse,
    RoleCreate,
    RoleListResponse,
    RoleResponse,
    RoleUpdate,
)
from app.features.permissions.service import PermissionService, RoleService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _role_response(role: Role, member_count: int = 0) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        organization_id=role.organization_id,
        is_system_role=role.is_system_role,
        permissions=[PermissionResponse.model_validate(p) for p in role.permissions],
        scopes={row.resource: row.scope for row in role.scopes},
        member_count=member_count,
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


# ============================================================================
# Permission Routes
# ============================================================================

@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    _context: AccessContext = Depends(get_access_context),
    service: PermissionService = Depends(get_permission_service),
):
    """List all permissions, ordered by category and name."""
    return await service.find_all()


@router.get("/permissions/grouped", response_model=Dict[str, List[PermissionResponse]])
async def list_permissions_grouped(
    _context: AccessContext = Depends(get_access_context),
    service: PermissionService = Depends(get_permission_service),
):
    """List permissions grouped by UI category."""
    return await service.find_all_grouped_by_category()


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=RoleListResponse)
async def list_roles(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    context: AccessContext = Depends(require_permission(Resource.ROLE, Action.READ)),
    service: RoleService = Depends(get_role_service),
):
    """List the organization's roles and shared system roles, system roles first."""
    roles, total = await service.find_all(
        context.organization_id,
        skip=(page - 1) * limit,
        limit=limit,
        search=search,
    )
    counts = await service.member_counts([role.id for role in roles], context.organization_id)
    return RoleListResponse(
        items=[_role_response(role, counts.get(role.id, 0)) for role in roles],
        total=total,
        page=page,
        page_size=limit,
        pages=page_count(total, limit),
    )


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    context: AccessContext = Depends(require_permission(Resource.ROLE, Action.READ)),
    service: RoleService = Depends(get_role_service),
):
    """Get a role with its permissions."""
    role = await service.find_by_id(role_id, context.organization_id)
    counts = await service.member_counts([role.id], context.organization_id)
    return _role_response(role, counts[role.id])


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role_data: RoleCreate,
    context: AccessContext = Depends(require_permission(Resource.ROLE, Action.CREATE)),
    actor: AuditActor = Depends(get_audit_actor),
    service: RoleService = Depends(get_role_service),
):
    """Create a custom role."""
    role = await service.create(
        context.organization_id,
        role_data.name,
        description=role_data.description,
        permission_ids=role_data.permission_ids,
        scopes=role_data.scopes,
        actor=actor,
    )
    return _role_response(role)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    context: AccessContext = Depends(require_permission(Resource.ROLE, Action.UPDATE)),
    actor: AuditActor = Depends(get_audit_actor),
    service: RoleService = Depends(get_role_service),
):
    """Update a role. System roles keep their name but their permissions may change."""
    role = await service.update(
        role_id,
        context.organization_id,
        name=role_update.name,
        description=role_update.description,
        permission_ids=role_update.permission_ids,
        scopes=role_update.scopes,
        actor=actor,
    )
    counts = await service.member_counts([role.id], context.organization_id)
    return _role_response(role, counts[role.id])


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    context: AccessContext = Depends(require_permission(Resource.ROLE, Action.DELETE)),
    actor: AuditActor = Depends(get_audit_actor),
    service: RoleService = Depends(get_role_service),
):
    """Delete a custom role that no member holds."""
    await service.delete(role_id, context.organization_id, actor=actor)

"""
Access introspection routes.
"""
from fastapi import APIRouter, Depends

from app.features.access.catalog import Scope
from app.features.access.context import AccessContext
from app.features.access.dependencies import get_access_context
from app.features.access.schemas import AccessCheckRequest, AccessCheckResponse, AccessMeResponse


router = APIRouter()


@router.get("/me", response_model=AccessMeResponse)
async def get_my_access(context: AccessContext = Depends(get_access_context)):
    """Role, permission keys, scopes and accessible projects of the caller."""
    accessible = None
    if context.accessible_project_ids is not None:
        accessible = sorted(context.accessible_project_ids)
    return AccessMeResponse(
        organization_id=context.organization_id,
        user_id=context.user_id,
        role=context.role,
        member_id=context.member_id,
        permissions=context.policy.permission_keys(),
        scopes=dict(context.policy.scopes),
        accessible_project_ids=accessible,
    )


@router.post("/check", response_model=AccessCheckResponse)
async def check_access(
    check: AccessCheckRequest,
    context: AccessContext = Depends(get_access_context),
):
    """Evaluate a (resource, action[, project]) check without performing it."""
    scope = context.scope_for(check.resource)

    if not context.can(check.resource, check.action):
        return AccessCheckResponse(
            allowed=False,
            scope=scope,
            reason=f"Role {context.role} cannot {check.action.value} {check.resource.value}",
        )

    if check.project_id and scope is not Scope.ALL:
        if scope is Scope.ASSIGNED or context.accessible_project_ids is not None:
            if check.project_id not in (context.accessible_project_ids or frozenset()):
                return AccessCheckResponse(allowed=False, scope=scope, reason="Project not accessible")

    return AccessCheckResponse(allowed=True, scope=scope)

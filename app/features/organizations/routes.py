"""
Organization member routes.

Members and their project access lists are managed by roles holding the
member.* permissions.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status

from app.features.access.catalog import Action, Resource
from app.features.access.context import AccessContext
from app.features.access.guards import require_permission
from app.features.organizations.dependencies import get_member_service
from app.features.organizations.models import OrganizationMember
from app.features.organizations.schemas import (
    MemberCreate,
    MemberResponse,
    MemberUpdate,
    ProjectAccessGrant,
    ProjectAccessResponse,
    ProjectAccessUpdate,
)
from app.features.organizations.service import MemberService
from app.features.permissions.audit import AuditActor
from app.features.permissions.dependencies import get_audit_actor


router = APIRouter(tags=["members"])

Service = Annotated[MemberService, Depends(get_member_service)]
Actor = Annotated[AuditActor, Depends(get_audit_actor)]


def _member_response(member: OrganizationMember) -> MemberResponse:
    return MemberResponse(
        id=member.id,
        organization_id=member.organization_id,
        user_id=member.user_id,
        role_id=member.role_id,
        role_name=member.role.name,
        project_ids=member.project_ids,
        created_at=member.created_at,
    )


def _access_response(member: OrganizationMember) -> ProjectAccessResponse:
    return ProjectAccessResponse(member_id=member.id, project_ids=member.project_ids, role_name=member.role.name)


@router.get("", response_model=list[MemberResponse])
async def list_members(
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.READ))],
    service: Service,
):
    """List the organization's members."""
    members = await service.list_members(context.organization_id)
    return [_member_response(member) for member in members]


@router.post("", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    member_data: MemberCreate,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.CREATE))],
    actor: Actor,
    service: Service,
):
    """Add a user to the organization with a role and optional project access."""
    member = await service.add(
        context.organization_id,
        member_data.user_id,
        member_data.role_id,
        project_ids=member_data.project_ids,
        actor=actor,
    )
    return _member_response(member)


@router.get("/{member_id}", response_model=MemberResponse)
async def get_member(
    member_id: str,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.READ))],
    service: Service,
):
    member = await service.find_by_id(member_id, context.organization_id)
    return _member_response(member)


@router.patch("/{member_id}", response_model=MemberResponse)
async def change_member_role(
    member_id: str,
    member_update: MemberUpdate,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.UPDATE))],
    actor: Actor,
    service: Service,
):
    """Assign a different role to a member."""
    member = await service.change_role(member_id, context.organization_id, member_update.role_id, actor=actor)
    return _member_response(member)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    member_id: str,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.DELETE))],
    actor: Actor,
    service: Service,
):
    """Remove a member and their project access."""
    await service.remove(member_id, context.organization_id, actor=actor)


# Project access

@router.get("/{member_id}/projects", response_model=ProjectAccessResponse)
async def get_member_projects(
    member_id: str,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.READ))],
    service: Service,
):
    member = await service.find_by_id(member_id, context.organization_id)
    return _access_response(member)


@router.put("/{member_id}/projects", response_model=ProjectAccessResponse)
async def set_member_projects(
    member_id: str,
    access: ProjectAccessUpdate,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.UPDATE))],
    actor: Actor,
    service: Service,
):
    """Replace the list of projects a member is assigned to."""
    member = await service.set_project_access(member_id, context.organization_id, access.project_ids, actor=actor)
    return _access_response(member)


@router.post("/{member_id}/projects", response_model=ProjectAccessResponse)
async def grant_member_project(
    member_id: str,
    grant: ProjectAccessGrant,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.UPDATE))],
    actor: Actor,
    service: Service,
):
    member = await service.grant_project_access(member_id, context.organization_id, grant.project_id, actor=actor)
    return _access_response(member)


@router.delete("/{member_id}/projects/{project_id}", response_model=ProjectAccessResponse)
async def revoke_member_project(
    member_id: str,
    project_id: str,
    context: Annotated[AccessContext, Depends(require_permission(Resource.MEMBER, Action.UPDATE))],
    actor: Actor,
    service: Service,
):
    member = await service.revoke_project_access(member_id, context.organization_id, project_id, actor=actor)
    return _access_response(member)

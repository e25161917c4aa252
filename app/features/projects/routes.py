"""
Project routes.

Listing applies the member's project filter; single-project routes are
guarded by the combined permission and project scope check.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.features.access.catalog import Action, Resource
from app.features.access.context import AccessContext
from app.features.access.filters import apply_project_filter
from app.features.access.guards import require_permission, require_resource_access
from app.features.permissions.audit import AuditActor, create_audit_log
from app.features.permissions.dependencies import get_audit_actor
from app.features.projects.models import Project
from app.features.projects.schemas import ProjectCreate, ProjectResponse


router = APIRouter(tags=["projects"])


async def _get_project(db: AsyncSession, project_id: str, organization_id: str) -> Project:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.organization_id == organization_id)
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project not found")
    return project


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    context: Annotated[AccessContext, Depends(require_resource_access(Resource.PROJECT, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """List the projects the caller can see."""
    stmt = select(Project).where(Project.organization_id == context.organization_id)
    stmt = apply_project_filter(stmt, Project.id, context, Resource.PROJECT)
    result = await db.execute(stmt.order_by(Project.name, Project.id))
    return result.scalars().all()


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    context: Annotated[AccessContext, Depends(require_permission(Resource.PROJECT, Action.CREATE))],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    project = Project(
        organization_id=context.organization_id,
        created_by=context.user_id,
        **project_data.model_dump(),
    )
    db.add(project)
    await db.flush()
    await create_audit_log(
        db, actor, "create", "project",
        resource_id=project.id,
        organization_id=context.organization_id,
        details={"name": project.name},
    )
    await db.commit()
    await db.refresh(project)
    return project


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    context: Annotated[AccessContext, Depends(require_resource_access(Resource.PROJECT, Action.READ))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    return await _get_project(db, project_id, context.organization_id)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    context: Annotated[AccessContext, Depends(require_resource_access(Resource.PROJECT, Action.DELETE))],
    actor: Annotated[AuditActor, Depends(get_audit_actor)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a project. Member access rows to it are removed by cascade."""
    project = await _get_project(db, project_id, context.organization_id)
    await create_audit_log(
        db, actor, "delete", "project",
        resource_id=project.id,
        organization_id=context.organization_id,
        details={"name": project.name},
    )
    await db.delete(project)
    await db.commit()

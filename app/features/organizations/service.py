"""
Organization membership and project access management.
"""
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError
from app.features.organizations.models import OrganizationMember, ProjectAccess
from app.features.permissions.audit import AuditActor, create_audit_log
from app.features.permissions.service import RoleService
from app.features.projects.models import Project
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


class MemberService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.roles = RoleService(db)

    async def list_members(self, organization_id: str) -> list[OrganizationMember]:
        result = await self.db.execute(
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at, OrganizationMember.id)
        )
        return list(result.scalars().all())

    async def find_by_id(self, member_id: str, organization_id: str) -> OrganizationMember:
        result = await self.db.execute(
            select(OrganizationMember)
            .where(
                OrganizationMember.id == member_id,
                OrganizationMember.organization_id == organization_id,
            )
            .execution_options(populate_existing=True)
        )
        member = result.scalar_one_or_none()
        if member is None:
            raise NotFoundError("Member not found")
        return member

    async def add(
        self,
        organization_id: str,
        user_id: str,
        role_id: str,
        project_ids: Optional[Iterable[str]] = None,
        actor: Optional[AuditActor] = None,
    ) -> OrganizationMember:
        if await self.db.get(User, user_id) is None:
            raise NotFoundError("User not found")
        role = await self.roles.find_by_id(role_id, organization_id)

        existing = await self.db.scalar(
            select(OrganizationMember.id).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
        )
        if existing is not None:
            raise ConflictError("User is already a member of this organization")

        project_ids = await self._validate_projects(organization_id, project_ids or [])
        member = OrganizationMember(organization_id=organization_id, user_id=user_id, role_id=role.id)
        member.project_accesses = [ProjectAccess(project_id=project_id) for project_id in project_ids]
        self.db.add(member)
        await self.db.flush()

        await create_audit_log(
            self.db, actor, "create", "member",
            resource_id=member.id,
            organization_id=organization_id,
            details={"user_id": user_id, "role": role.name, "project_ids": project_ids},
        )
        await self._commit()
        return await self.find_by_id(member.id, organization_id)

    async def change_role(
        self,
        member_id: str,
        organization_id: str,
        role_id: str,
        actor: Optional[AuditActor] = None,
    ) -> OrganizationMember:
        member = await self.find_by_id(member_id, organization_id)
        role = await self.roles.find_by_id(role_id, organization_id)
        previous = member.role.name

        member.role_id = role.id
        member.role = role
        await create_audit_log(
            self.db, actor, "update", "member",
            resource_id=member.id,
            organization_id=organization_id,
            details={"role": {"from": previous, "to": role.name}},
        )
        await self._commit()
        return await self.find_by_id(member.id, organization_id)

    async def remove(
        self,
        member_id: str,
        organization_id: str,
        actor: Optional[AuditActor] = None,
    ) -> None:
        """Remove a member. Their project access rows go with them."""
        member = await self.find_by_id(member_id, organization_id)
        await create_audit_log(
            self.db, actor, "delete", "member",
            resource_id=member.id,
            organization_id=organization_id,
            details={"user_id": member.user_id, "project_ids": member.project_ids},
        )
        await self.db.delete(member)
        await self._commit()

    # ------------------------------------------------------------------------
    # Project access
    # ------------------------------------------------------------------------

    async def set_project_access(
        self,
        member_id: str,
        organization_id: str,
        project_ids: Iterable[str],
        actor: Optional[AuditActor] = None,
    ) -> OrganizationMember:
        """Replace the member's project access list."""
        member = await self.find_by_id(member_id, organization_id)
        wanted = set(await self._validate_projects(organization_id, project_ids))

        current = {access.project_id: access for access in member.project_accesses}
        for project_id, access in current.items():
            if project_id not in wanted:
                member.project_accesses.remove(access)
        for project_id in sorted(wanted - set(current)):
            member.project_accesses.append(ProjectAccess(project_id=project_id))

        await create_audit_log(
            self.db, actor, "update", "project_access",
            resource_id=member.id,
            organization_id=organization_id,
            details={"project_ids": sorted(wanted)},
        )
        await self._commit()
        return await self.find_by_id(member.id, organization_id)

    async def grant_project_access(
        self,
        member_id: str,
        organization_id: str,
        project_id: str,
        actor: Optional[AuditActor] = None,
    ) -> OrganizationMember:
        member = await self.find_by_id(member_id, organization_id)
        await self._validate_projects(organization_id, [project_id])
        if project_id in member.project_ids:
            return member

        member.project_accesses.append(ProjectAccess(project_id=project_id))
        await create_audit_log(
            self.db, actor, "grant", "project_access",
            resource_id=member.id,
            organization_id=organization_id,
            details={"project_id": project_id},
        )
        await self._commit()
        return await self.find_by_id(member.id, organization_id)

    async def revoke_project_access(
        self,
        member_id: str,
        organization_id: str,
        project_id: str,
        actor: Optional[AuditActor] = None,
    ) -> OrganizationMember:
        member = await self.find_by_id(member_id, organization_id)
        access = next((a for a in member.project_accesses if a.project_id == project_id), None)
        if access is None:
            raise NotFoundError("Project access not found")

        member.project_accesses.remove(access)
        await create_audit_log(
            self.db, actor, "revoke", "project_access",
            resource_id=member.id,
            organization_id=organization_id,
            details={"project_id": project_id},
        )
        await self._commit()
        return await self.find_by_id(member.id, organization_id)

    async def _validate_projects(self, organization_id: str, project_ids: Iterable[str]) -> list[str]:
        wanted = sorted(set(project_ids))
        if not wanted:
            return []
        result = await self.db.execute(
            select(Project.id).where(Project.id.in_(wanted), Project.organization_id == organization_id)
        )
        found = set(result.scalars().all())
        missing = [project_id for project_id in wanted if project_id not in found]
        if missing:
            raise NotFoundError("Project not found", details={"project_ids": missing})
        return wanted

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            log.info("Member write rejected by constraint: %s", e.orig)
            raise ConflictError("Membership already exists")

"""
Permission catalog and role registry persistence.

Services own their transaction: each write method commits once, so the role,
its permission links, its scope rows and the audit entry land together or not
at all.
"""
import enum
from typing import Iterable, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import (
    ConflictError,
    NotFoundError,
    RoleHasMembersError,
    RoleValidationError,
    SystemRoleDeleteError,
    SystemRoleRenameError,
    UnknownPermissionError,
)
from app.features.access.catalog import PermissionCatalog, Resource, RoleName, Scope
from app.features.access.policy import ROLE_DESCRIPTIONS, AccessPolicy
from app.features.organizations.models import OrganizationMember
from app.features.permissions.audit import AuditActor, create_audit_log
from app.features.permissions.models import Permission, Role, RoleScope
from app.utils import get_logger


log = get_logger(__name__)


class UnknownPermissionPolicy(str, enum.Enum):
    """What role writes do with permission ids that do not exist."""
    REJECT = "reject"
    IGNORE = "ignore"


# ============================================================================
# Permission Catalog
# ============================================================================

class PermissionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_all(self) -> list[Permission]:
        result = await self.db.execute(select(Permission).order_by(Permission.category, Permission.name))
        return list(result.scalars().all())

    async def find_all_grouped_by_category(self) -> dict[str, list[Permission]]:
        grouped: dict[str, list[Permission]] = {}
        for permission in await self.find_all():
            grouped.setdefault(permission.category, []).append(permission)
        return grouped

    async def find_by_id(self, permission_id: str) -> Optional[Permission]:
        result = await self.db.execute(select(Permission).where(Permission.id == permission_id))
        return result.scalar_one_or_none()

    async def find_by_key(self, key: str) -> Optional[Permission]:
        result = await self.db.execute(select(Permission).where(Permission.key == key))
        return result.scalar_one_or_none()

    async def find_by_keys(self, keys: Iterable[str]) -> list[Permission]:
        keys = list(keys)
        if not keys:
            return []
        result = await self.db.execute(select(Permission).where(Permission.key.in_(keys)))
        return list(result.scalars().all())

    async def find_by_ids(self, permission_ids: Iterable[str]) -> list[Permission]:
        permission_ids = list(permission_ids)
        if not permission_ids:
            return []
        result = await self.db.execute(select(Permission).where(Permission.id.in_(permission_ids)))
        return list(result.scalars().all())

    async def sync_catalog(self, catalog: PermissionCatalog) -> int:
        """
        Make the permissions table match the catalog.

        Missing entries are inserted and the labels of existing ones refreshed.
        Rows no longer in the catalog are kept, roles may still reference them.

        Returns:
            Number of inserted permissions
        """
        result = await self.db.execute(select(Permission))
        existing = {permission.key: permission for permission in result.scalars().all()}

        inserted = 0
        for definition in catalog:
            permission = existing.get(definition.key)
            if permission is None:
                self.db.add(Permission(
                    key=definition.key,
                    resource=definition.resource.value,
                    action=definition.action.value,
                    name=definition.name,
                    category=definition.category,
                    description=definition.description,
                ))
                inserted += 1
            else:
                permission.name = definition.name
                permission.category = definition.category
                permission.description = definition.description

        await self.db.commit()
        log.info("Synced permission catalog: %d inserted, %d total", inserted, len(catalog))
        return inserted


# ============================================================================
# Role Registry
# ============================================================================

class RoleService:
    """
    Organization role management.

    Usage:
        service = RoleService(db)
        role = await service.create(org_id, "Site Engineer", permission_ids=[...])
    """

    def __init__(
        self,
        db: AsyncSession,
        unknown_permissions: UnknownPermissionPolicy | str | None = None,
    ):
        self.db = db
        self.unknown_permissions = UnknownPermissionPolicy(
            unknown_permissions or config.UNKNOWN_PERMISSION_POLICY
        )
        self.permissions = PermissionService(db)

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    @staticmethod
    def _visible_to(organization_id: str):
        # An organization sees its own roles and the shared system roles
        return or_(Role.organization_id == organization_id, Role.organization_id.is_(None))

    async def find_by_id(self, role_id: str, organization_id: str) -> Role:
        result = await self.db.execute(
            select(Role)
            .where(Role.id == role_id, self._visible_to(organization_id))
            .execution_options(populate_existing=True)
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def find_all(
        self,
        organization_id: str,
        skip: int = 0,
        limit: int = 50,
        search: Optional[str] = None,
    ) -> tuple[list[Role], int]:
        conditions = [self._visible_to(organization_id)]
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Role.name.ilike(pattern), Role.description.ilike(pattern)))

        total = await self.db.scalar(select(func.count()).select_from(Role).where(*conditions))
        result = await self.db.execute(
            select(Role)
            .where(*conditions)
            .order_by(Role.is_system_role.desc(), Role.name)
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def member_counts(
        self,
        role_ids: Iterable[str],
        organization_id: Optional[str] = None,
    ) -> dict[str, int]:
        role_ids = list(role_ids)
        if not role_ids:
            return {}
        stmt = (
            select(OrganizationMember.role_id, func.count(OrganizationMember.id))
            .where(OrganizationMember.role_id.in_(role_ids))
            .group_by(OrganizationMember.role_id)
        )
        if organization_id is not None:
            stmt = stmt.where(OrganizationMember.organization_id == organization_id)
        result = await self.db.execute(stmt)
        counts = {role_id: 0 for role_id in role_ids}
        counts.update({role_id: count for role_id, count in result.all()})
        return counts

    # ------------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------------

    async def create(
        self,
        organization_id: str,
        name: str,
        description: Optional[str] = None,
        permission_ids: Optional[Iterable[str]] = None,
        scopes: Optional[Mapping[Resource | str, Scope | str]] = None,
        actor: Optional[AuditActor] = None,
    ) -> Role:
        name = self._validate_name(name)
        self._ensure_not_reserved(name)
        await self._ensure_name_free(organization_id, name)

        role = Role(
            organization_id=organization_id,
            name=name,
            description=description,
            is_system_role=False,
        )
        role.permissions = await self._resolve_permissions(permission_ids or [])
        role.scopes = [
            RoleScope(resource=resource, scope=scope)
            for resource, scope in _normalize_scopes(scopes or {}).items()
        ]
        self.db.add(role)
        await self.db.flush()

        await create_audit_log(
            self.db, actor, "create", "role",
            resource_id=role.id,
            organization_id=organization_id,
            details={"name": name, "permissions": sorted(p.key for p in role.permissions)},
        )
        await self._commit()
        return await self.find_by_id(role.id, organization_id)

    async def update(
        self,
        role_id: str,
        organization_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permission_ids: Optional[Iterable[str]] = None,
        scopes: Optional[Mapping[Resource | str, Scope | str]] = None,
        actor: Optional[AuditActor] = None,
    ) -> Role:
        """
        Update a role. Arguments left as None are not changed; ``permission_ids``
        and ``scopes`` replace the current sets when given.

        Raises:
            NotFoundError: role is not one of the organization's roles
            SystemRoleRenameError: a different name was given for a system role
        """
        role = await self._find_owned(role_id, organization_id)
        changes: dict = {}

        if name is not None:
            if role.is_system_role and name.strip() != role.name:
                raise SystemRoleRenameError()
            name = self._validate_name(name)
            if name != role.name:
                self._ensure_not_reserved(name)
                await self._ensure_name_free(organization_id, name, exclude_id=role.id)
                changes["name"] = {"from": role.name, "to": name}
                role.name = name

        if description is not None:
            role.description = description
            changes["description"] = description

        if permission_ids is not None:
            role.permissions = await self._resolve_permissions(permission_ids)
            changes["permissions"] = sorted(p.key for p in role.permissions)

        if scopes is not None:
            wanted = _normalize_scopes(scopes)
            # Update rows in place, replacing the collection would re-insert existing keys
            for row in list(role.scopes):
                if row.resource in wanted:
                    row.scope = wanted.pop(row.resource)
                else:
                    role.scopes.remove(row)
            for resource, scope in wanted.items():
                role.scopes.append(RoleScope(resource=resource, scope=scope))
            changes["scopes"] = _normalize_scopes(scopes)

        await create_audit_log(
            self.db, actor, "update", "role",
            resource_id=role.id,
            organization_id=organization_id,
            details=changes,
        )
        await self._commit()
        return await self.find_by_id(role.id, organization_id)

    async def delete(
        self,
        role_id: str,
        organization_id: str,
        actor: Optional[AuditActor] = None,
    ) -> None:
        """
        Raises:
            SystemRoleDeleteError: the role is a system role
            RoleHasMembersError: members still hold the role
        """
        role = await self._find_owned(role_id, organization_id)
        if role.is_system_role:
            raise SystemRoleDeleteError()

        counts = await self.member_counts([role.id])
        if counts[role.id] > 0:
            raise RoleHasMembersError(details={"member_count": counts[role.id]})

        await create_audit_log(
            self.db, actor, "delete", "role",
            resource_id=role.id,
            organization_id=organization_id,
            details={"name": role.name},
        )
        await self.db.delete(role)
        await self._commit()

    async def ensure_system_roles(
        self,
        organization_id: str,
        access_policy: AccessPolicy,
    ) -> list[Role]:
        """
        Create the organization's system roles from the role table.

        Existing roles are left untouched so permission edits survive reseeding.
        Permissions are matched by key and must already be synced.
        """
        result = await self.db.execute(
            select(Role).where(Role.organization_id == organization_id, Role.is_system_role.is_(True))
        )
        existing = {role.name: role for role in result.scalars().all()}

        created = 0
        for policy in access_policy:
            if policy.name in existing:
                continue
            description = None
            if policy.name in RoleName.__members__:
                description = ROLE_DESCRIPTIONS.get(RoleName(policy.name))
            role = Role(
                organization_id=organization_id,
                name=policy.name,
                description=description,
                is_system_role=True,
            )
            role.permissions = await self.permissions.find_by_keys(policy.permission_keys())
            role.scopes = [
                RoleScope(resource=resource.value, scope=scope.value)
                for resource, scope in policy.scopes.items()
            ]
            self.db.add(role)
            existing[policy.name] = role
            created += 1

        await self._commit()
        log.info("Ensured system roles for organization %s: %d created", organization_id, created)

        result = await self.db.execute(
            select(Role)
            .where(Role.organization_id == organization_id, Role.is_system_role.is_(True))
            .order_by(Role.name)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------------

    async def _find_owned(self, role_id: str, organization_id: str) -> Role:
        # Shared system roles are read-only from within an organization
        result = await self.db.execute(
            select(Role).where(Role.id == role_id, Role.organization_id == organization_id)
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role not found")
        return role

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise RoleValidationError("Role name is required")
        if len(name) > config.ROLE_NAME_MAX_LENGTH:
            raise RoleValidationError(f"Role name must be at most {config.ROLE_NAME_MAX_LENGTH} characters")
        return name

    @staticmethod
    def _ensure_not_reserved(name: str) -> None:
        # Identity role claims are matched against system role names
        if name.upper() in RoleName.__members__:
            raise RoleValidationError(f"Role name '{name}' is reserved for a system role")

    async def _ensure_name_free(self, organization_id: str, name: str, exclude_id: Optional[str] = None) -> None:
        stmt = select(Role.id).where(Role.name == name, self._visible_to(organization_id))
        if exclude_id is not None:
            stmt = stmt.where(Role.id != exclude_id)
        if await self.db.scalar(stmt) is not None:
            raise ConflictError(f"Role '{name}' already exists")

    async def _resolve_permissions(self, permission_ids: Iterable[str]) -> list[Permission]:
        wanted = list(dict.fromkeys(permission_ids))
        permissions = await self.permissions.find_by_ids(wanted)
        missing = sorted(set(wanted) - {permission.id for permission in permissions})
        if missing:
            if self.unknown_permissions is UnknownPermissionPolicy.REJECT:
                raise UnknownPermissionError(details={"permission_ids": missing})
            log.warning("Ignoring unknown permission ids: %s", ", ".join(missing))
        return permissions

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            log.info("Role write rejected by constraint: %s", e.orig)
            raise ConflictError("Role already exists")


def _normalize_scopes(scopes: Mapping[Resource | str, Scope | str]) -> dict[str, str]:
    return {Resource(resource).value: Scope(scope).value for resource, scope in scopes.items()}

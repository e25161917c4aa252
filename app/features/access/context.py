"""
Request-time access context.

The resolver runs once per guarded request. It turns the request identity into
an ``AccessContext``: the member's role policy and, for roles limited to
assigned projects, the set of project ids the member may touch.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core import config
from app.core.errors import MissingOrgContextError
from app.features.access.catalog import Action, Resource, Scope
from app.features.access.identity import IdentitySource
from app.features.access.policy import AccessPolicy, RolePolicy, get_permission_scope, is_allowed
from app.features.organizations.models import OrganizationMember
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class AccessContext:
    """
    Who is acting, under which role, and on which projects.

    ``accessible_project_ids`` is None when it was not loaded, which is the case
    for roles that have no "assigned" scope on any resource.
    """
    organization_id: str
    user_id: str
    role: str
    policy: RolePolicy
    member_id: Optional[str] = None
    accessible_project_ids: Optional[frozenset[str]] = None

    def can(self, resource: Resource | str, action: Action | str) -> bool:
        return is_allowed(self.policy, resource, action)

    def scope_for(self, resource: Resource | str) -> Scope:
        return get_permission_scope(self.policy, resource)

    def can_access_project(self, project_id: str, resource: Resource | str = Resource.PROJECT) -> bool:
        scope = self.scope_for(resource)
        if scope is Scope.ALL:
            return True
        if scope is Scope.NONE or self.accessible_project_ids is None:
            return False
        return project_id in self.accessible_project_ids


class ContextResolver:
    """
    Builds the AccessContext for a request.

    With ``stored_roles`` (the default) the member's persisted role is
    authoritative, system roles included: its permission and scope rows are
    evaluated, so edits made through the role API apply from the next request.
    The member, its role and its project access are read in one lookup.

    Without ``stored_roles`` system role names are evaluated from the injected
    AccessPolicy, and the member row is only read when the role limits some
    resource to assigned projects or is not a system role.
    """

    def __init__(
        self,
        identity_source: IdentitySource,
        access_policy: AccessPolicy,
        default_role: str = config.DEFAULT_ROLE,
        stored_roles: bool = config.EVALUATE_STORED_ROLES,
    ):
        self.identity_source = identity_source
        self.access_policy = access_policy
        self.default_role = default_role
        self.stored_roles = stored_roles

    async def resolve(self, request: Request, db: AsyncSession) -> AccessContext:
        identity = self.identity_source.identify(request)
        if not identity.organization_id or not identity.user_id:
            raise MissingOrgContextError()

        role_name = identity.role or self.default_role
        policy = None if self.stored_roles else self.access_policy.get(role_name)

        if policy is not None and not policy.is_project_scoped:
            return AccessContext(
                organization_id=identity.organization_id,
                user_id=identity.user_id,
                role=role_name,
                policy=policy,
            )

        member = await self._load_member(db, identity.organization_id, identity.user_id)
        if member is None:
            log.info(
                "No membership for user %s in organization %s",
                identity.user_id, identity.organization_id,
            )
            raise MissingOrgContextError()

        if policy is None:
            role = member.role
            if not self.stored_roles and role.is_system_role and role.name in self.access_policy:
                policy = self.access_policy.get(role.name)
            else:
                policy = RolePolicy.from_role(role)
            if role.name != role_name:
                log.debug("Identity role %r differs from member role %r", role_name, role.name)
            role_name = role.name

        accessible = None
        if policy.is_project_scoped:
            accessible = frozenset(access.project_id for access in member.project_accesses)

        return AccessContext(
            organization_id=identity.organization_id,
            user_id=identity.user_id,
            role=role_name,
            policy=policy,
            member_id=member.id,
            accessible_project_ids=accessible,
        )

    async def _load_member(
        self,
        db: AsyncSession,
        organization_id: str,
        user_id: str,
    ) -> Optional[OrganizationMember]:
        log.debug("Loading member for user %s in organization %s", user_id, organization_id)
        # role (with permissions and scopes) and project_accesses are selectin-loaded
        result = await db.execute(
            select(OrganizationMember).where(
                OrganizationMember.organization_id == organization_id,
                OrganizationMember.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

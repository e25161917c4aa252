"""
Access evaluation.

A ``RolePolicy`` is the immutable snapshot a decision is made against: the set
of granted ``(resource, action)`` pairs and the scope configured per resource.
``has_permission`` and ``get_permission_scope`` are pure functions over it, so
they are safe to call from any number of concurrent requests.

``AccessPolicy`` is the role table for the system roles (ADMIN, MANAGER,
ACCOUNTANT, SUPERVISOR, CLIENT). Guards never compare role names; whether a
role sees every project is read from its scope entry for the resource.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from app.features.access.catalog import (
    Action,
    PermissionCatalog,
    Resource,
    RoleName,
    Scope,
    permission_key,
)
from app.utils import get_logger


log = get_logger(__name__)


Grant = tuple[Resource, Action]


@dataclass(frozen=True)
class RolePolicy:
    """Granted permissions and per-resource scopes of one role."""
    name: str
    grants: frozenset[Grant] = frozenset()
    scopes: Mapping[Resource, Scope] = field(default_factory=dict)

    def __post_init__(self):
        grants = frozenset((Resource(resource), Action(action)) for resource, action in self.grants)
        scopes = {Resource(resource): Scope(scope) for resource, scope in self.scopes.items()}
        object.__setattr__(self, "grants", grants)
        object.__setattr__(self, "scopes", MappingProxyType(scopes))

    @classmethod
    def build(
        cls,
        name: str,
        table: Mapping[Resource, tuple[Iterable[Action], Scope]],
    ) -> "RolePolicy":
        """Build a policy from ``{resource: (actions, scope)}``."""
        grants = {(resource, action) for resource, (actions, _scope) in table.items() for action in actions}
        scopes = {resource: scope for resource, (_actions, scope) in table.items()}
        return cls(name=name, grants=frozenset(grants), scopes=scopes)

    @classmethod
    def from_role(cls, role: Any) -> "RolePolicy":
        """
        Build a policy from a persisted Role with loaded ``permissions`` and ``scopes``.

        Permission rows whose resource or action is not part of the vocabulary
        are skipped. If a resource has more than one scope row the narrowest wins.
        """
        grants = set()
        for permission in role.permissions:
            try:
                grants.add((Resource(permission.resource), Action(permission.action)))
            except ValueError:
                log.warning(
                    "Skipping unknown permission %s.%s on role %s",
                    permission.resource, permission.action, role.id,
                )

        collected: dict[Resource, list[Scope]] = {}
        for row in role.scopes:
            try:
                resource, scope = Resource(row.resource), Scope(row.scope)
            except ValueError:
                log.warning("Skipping unknown scope %s=%s on role %s", row.resource, row.scope, role.id)
                continue
            collected.setdefault(resource, []).append(scope)
        scopes = {resource: Scope.narrowest(values) for resource, values in collected.items()}

        return cls(name=role.name, grants=frozenset(grants), scopes=scopes)

    @property
    def is_project_scoped(self) -> bool:
        """True if any resource is limited to the member's assigned projects."""
        return any(scope is Scope.ASSIGNED for scope in self.scopes.values())

    def permission_keys(self) -> list[str]:
        return sorted(permission_key(resource, action) for resource, action in self.grants)

    def with_grant(self, resource: Resource | str, action: Action | str) -> "RolePolicy":
        grant = (Resource(resource), Action(action))
        return RolePolicy(name=self.name, grants=self.grants | {grant}, scopes=dict(self.scopes))

    def without_grant(self, resource: Resource | str, action: Action | str) -> "RolePolicy":
        grant = (Resource(resource), Action(action))
        return RolePolicy(name=self.name, grants=self.grants - {grant}, scopes=dict(self.scopes))

    def with_scope(self, resource: Resource | str, scope: Scope | str) -> "RolePolicy":
        scopes = dict(self.scopes)
        scopes[Resource(resource)] = Scope(scope)
        return RolePolicy(name=self.name, grants=self.grants, scopes=scopes)


def has_permission(role: RolePolicy, resource: Resource | str, action: Action | str) -> bool:
    """True iff the role grants exactly this resource and action."""
    return (Resource(resource), Action(action)) in role.grants


def get_permission_scope(role: RolePolicy, resource: Resource | str) -> Scope:
    """Scope configured for the resource, Scope.NONE if unset."""
    return role.scopes.get(Resource(resource), Scope.NONE)


def is_allowed(role: RolePolicy, resource: Resource | str, action: Action | str) -> bool:
    """Permission granted and the resource scope is not NONE."""
    return has_permission(role, resource, action) and get_permission_scope(role, resource) is not Scope.NONE


class AccessPolicy:
    """
    Role table mapping role names to policies.

    Usage:
        policy = AccessPolicy.default()
        supervisor = policy.get("SUPERVISOR")
        get_permission_scope(supervisor, Resource.EXPENSE)  # Scope.ASSIGNED
    """

    def __init__(self, roles: Iterable[RolePolicy]):
        self._roles = {role.name: role for role in roles}

    @classmethod
    def default(cls, catalog: PermissionCatalog | None = None) -> "AccessPolicy":
        catalog = catalog or PermissionCatalog.default()
        return cls(_default_role_policies(catalog))

    def get(self, name: str | RoleName) -> RolePolicy | None:
        if isinstance(name, RoleName):
            name = name.value
        return self._roles.get(name)

    def __contains__(self, name: object) -> bool:
        if isinstance(name, RoleName):
            name = name.value
        return name in self._roles

    def __iter__(self):
        return iter(self._roles.values())

    def names(self) -> list[str]:
        return list(self._roles)

    def with_role(self, role: RolePolicy) -> "AccessPolicy":
        roles = dict(self._roles)
        roles[role.name] = role
        return AccessPolicy(roles.values())


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
_READ = (Action.READ,)

# Resources missing from a role's table have no grants and scope NONE
SYSTEM_ROLE_TABLE: dict[RoleName, dict[Resource, tuple[tuple[Action, ...], Scope]]] = {
    RoleName.MANAGER: {
        Resource.PROJECT: (_CRUD, Scope.ALL),
        Resource.STAGE: (_CRUD, Scope.ALL),
        Resource.EXPENSE: (_CRUD + (Action.APPROVE,), Scope.ALL),
        Resource.PAYMENT: (_CRUD, Scope.ALL),
        Resource.PARTY: (_CRUD, Scope.ALL),
        Resource.DOCUMENT: (_CRUD, Scope.ALL),
        Resource.CATEGORY: (_CRUD, Scope.ALL),
        Resource.BOQ: (_CRUD, Scope.ALL),
        Resource.ADVANCE: (_CRUD, Scope.ALL),
        Resource.ORGANIZATION: (_READ, Scope.ALL),
        Resource.MEMBER: (_READ, Scope.ALL),
        Resource.ROLE: (_READ, Scope.ALL),
    },
    RoleName.ACCOUNTANT: {
        Resource.PROJECT: (_READ, Scope.ALL),
        Resource.STAGE: (_READ, Scope.ALL),
        Resource.EXPENSE: (_CRUD + (Action.APPROVE,), Scope.ALL),
        Resource.PAYMENT: (_CRUD, Scope.ALL),
        Resource.PARTY: (_READ, Scope.ALL),
        Resource.DOCUMENT: (_READ, Scope.ALL),
        Resource.CATEGORY: (_READ, Scope.ALL),
        Resource.BOQ: (_READ, Scope.ALL),
        Resource.ADVANCE: (_CRUD, Scope.ALL),
        Resource.ORGANIZATION: (_READ, Scope.ALL),
        Resource.MEMBER: (_READ, Scope.ALL),
        Resource.ROLE: (_READ, Scope.ALL),
    },
    RoleName.SUPERVISOR: {
        Resource.PROJECT: (_READ, Scope.ASSIGNED),
        Resource.STAGE: (_READ, Scope.ASSIGNED),
        Resource.EXPENSE: ((Action.CREATE, Action.READ), Scope.ASSIGNED),
        Resource.PAYMENT: (_READ, Scope.ASSIGNED),
        Resource.PARTY: (_READ, Scope.ALL),
        Resource.DOCUMENT: (_CRUD, Scope.ASSIGNED),
        Resource.CATEGORY: (_READ, Scope.ALL),
        Resource.BOQ: (_READ, Scope.ASSIGNED),
        Resource.ADVANCE: ((Action.CREATE, Action.READ), Scope.OWN),
        Resource.ORGANIZATION: (_READ, Scope.ALL),
    },
    RoleName.CLIENT: {
        Resource.PROJECT: (_READ, Scope.ASSIGNED),
        Resource.STAGE: (_READ, Scope.ASSIGNED),
        Resource.EXPENSE: (_READ, Scope.ASSIGNED),
        Resource.PAYMENT: (_READ, Scope.ASSIGNED),
        Resource.DOCUMENT: (_READ, Scope.ASSIGNED),
        Resource.CATEGORY: (_READ, Scope.ALL),
        Resource.ORGANIZATION: (_READ, Scope.ALL),
    },
}

ROLE_DESCRIPTIONS: dict[RoleName, str] = {
    RoleName.ADMIN: "Full access to all features and settings",
    RoleName.MANAGER: "Manage projects, expenses, payments and parties",
    RoleName.ACCOUNTANT: "Manage expenses, payments and financial records",
    RoleName.SUPERVISOR: "Supervise site work on assigned projects",
    RoleName.CLIENT: "Read-only access to their projects",
}


def _default_role_policies(catalog: PermissionCatalog) -> list[RolePolicy]:
    # ADMIN holds every catalog permission rather than a wildcard
    admin_grants = frozenset((definition.resource, definition.action) for definition in catalog)
    admin = RolePolicy(
        name=RoleName.ADMIN.value,
        grants=admin_grants,
        scopes={resource: Scope.ALL for resource, _action in admin_grants},
    )
    policies = [admin]
    for role_name, table in SYSTEM_ROLE_TABLE.items():
        policy = RolePolicy.build(role_name.value, table)
        # Grants outside the catalog cannot be assigned, keep the table consistent with it
        grants = frozenset(grant for grant in policy.grants if catalog.find(*grant) is not None)
        policies.append(RolePolicy(name=policy.name, grants=grants, scopes=dict(policy.scopes)))
    return policies

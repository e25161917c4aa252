"""
Permission vocabulary.

Defines the closed sets of resources, actions, scopes and system role names,
and the permission catalog: the complete list of controllable
``(resource, action)`` operations, each with a stable key
``"<resource>.<action>"`` and a UI category.
"""
import enum
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping


class Resource(str, enum.Enum):
    """Resources an organization member can act on."""
    PROJECT = "project"
    STAGE = "stage"
    EXPENSE = "expense"
    PAYMENT = "payment"
    PARTY = "party"
    DOCUMENT = "document"
    CATEGORY = "category"
    BOQ = "boq"
    ADVANCE = "advance"
    ORGANIZATION = "organization"
    MEMBER = "member"
    ROLE = "role"


class Action(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    MANAGE = "manage"


class Scope(str, enum.Enum):
    """
    Breadth of a granted permission.

    ALL: every project in the organization
    ASSIGNED: projects listed in the member's ProjectAccess rows
    OWN: records the member owns
    NONE: denied
    """
    ALL = "all"
    ASSIGNED = "assigned"
    OWN = "own"
    NONE = "none"

    @property
    def breadth(self) -> int:
        return _SCOPE_BREADTH[self]

    @classmethod
    def narrowest(cls, scopes: Iterable["Scope"]) -> "Scope":
        """Return the narrowest of the given scopes, or NONE if there are none."""
        return min(scopes, key=lambda scope: scope.breadth, default=cls.NONE)


_SCOPE_BREADTH = {Scope.NONE: 0, Scope.OWN: 1, Scope.ASSIGNED: 2, Scope.ALL: 3}


class RoleName(str, enum.Enum):
    """System roles every organization gets."""
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    SUPERVISOR = "SUPERVISOR"
    CLIENT = "CLIENT"


def permission_key(resource: Resource | str, action: Action | str) -> str:
    return f"{Resource(resource).value}.{Action(action).value}"


@dataclass(frozen=True)
class PermissionDefinition:
    """A single catalog entry."""
    resource: Resource
    action: Action
    category: str
    name: str
    description: str | None = None

    @property
    def key(self) -> str:
        return permission_key(self.resource, self.action)


class PermissionCatalog:
    """
    Immutable, ordered collection of permission definitions keyed by
    ``"<resource>.<action>"``.

    The catalog is created once per deployment and injected where it is
    needed (app.state, seeding, tests) rather than imported as a global.

    Usage:
        catalog = PermissionCatalog.default()
        catalog.find(Resource.EXPENSE, Action.APPROVE).name  # "Approve Expenses"
    """

    def __init__(self, definitions: Iterable[PermissionDefinition]):
        entries: dict[str, PermissionDefinition] = {}
        for definition in definitions:
            if definition.key in entries:
                raise ValueError(f"Duplicate permission in catalog: {definition.key}")
            entries[definition.key] = definition
        self._entries = entries

    @classmethod
    def default(cls) -> "PermissionCatalog":
        return cls(_default_definitions())

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any]]) -> "PermissionCatalog":
        """
        Build a catalog from plain mappings.

        Each entry needs ``resource``, ``action``, ``category`` and ``name``;
        ``description`` is optional. Unknown resources or actions raise ValueError.
        """
        return cls(
            PermissionDefinition(
                resource=Resource(entry["resource"]),
                action=Action(entry["action"]),
                category=entry["category"],
                name=entry["name"],
                description=entry.get("description"),
            )
            for entry in entries
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "PermissionCatalog":
        """Load a catalog from a JSON file holding a list of entries."""
        with open(path, encoding="utf-8") as handle:
            return cls.from_entries(json.load(handle))

    def __iter__(self) -> Iterator[PermissionDefinition]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def get(self, key: str) -> PermissionDefinition | None:
        return self._entries.get(key)

    def find(self, resource: Resource | str, action: Action | str) -> PermissionDefinition | None:
        return self._entries.get(permission_key(resource, action))

    def for_resource(self, resource: Resource | str) -> list[PermissionDefinition]:
        resource = Resource(resource)
        return [definition for definition in self if definition.resource is resource]

    def grouped_by_category(self) -> dict[str, list[PermissionDefinition]]:
        grouped: dict[str, list[PermissionDefinition]] = {}
        for definition in self:
            grouped.setdefault(definition.category, []).append(definition)
        return grouped


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)

# resource -> (category, plural label, actions)
_DEFAULT_VOCABULARY: dict[Resource, tuple[str, str, tuple[Action, ...]]] = {
    Resource.PROJECT: ("Projects", "Projects", _CRUD + (Action.MANAGE,)),
    Resource.STAGE: ("Projects", "Stages", _CRUD),
    Resource.EXPENSE: ("Expenses", "Expenses", _CRUD + (Action.APPROVE,)),
    Resource.PAYMENT: ("Payments", "Payments", _CRUD),
    Resource.PARTY: ("Parties", "Parties", _CRUD + (Action.MANAGE,)),
    Resource.DOCUMENT: ("Documents", "Documents", _CRUD),
    Resource.CATEGORY: ("Settings", "Categories", _CRUD),
    Resource.BOQ: ("BOQ", "BOQ Items", _CRUD),
    Resource.ADVANCE: ("Advances", "Advances", _CRUD),
    Resource.ORGANIZATION: ("Settings", "Organization", (Action.READ, Action.UPDATE, Action.MANAGE)),
    Resource.MEMBER: ("Team", "Team Members", _CRUD),
    Resource.ROLE: ("Roles", "Roles", _CRUD),
}

_ACTION_VERBS = {
    Action.CREATE: "Create",
    Action.READ: "View",
    Action.UPDATE: "Edit",
    Action.DELETE: "Delete",
    Action.APPROVE: "Approve",
    Action.MANAGE: "Manage",
}


def _default_definitions() -> list[PermissionDefinition]:
    definitions = []
    for resource, (category, label, actions) in _DEFAULT_VOCABULARY.items():
        for action in actions:
            name = f"{_ACTION_VERBS[action]} {label}"
            definitions.append(
                PermissionDefinition(
                    resource=resource,
                    action=action,
                    category=category,
                    name=name,
                    description=f"{name} in the organization",
                )
            )
    return definitions

"""
Query filters derived from the access context.

Handlers listing project-bound records call ``apply_project_filter`` (or use
``get_project_filter`` for non-SQL stores) so members limited to assigned
projects only see those projects.
"""
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import Select

from app.features.access.catalog import Resource, Scope
from app.features.access.context import AccessContext


@dataclass(frozen=True)
class ProjectFilter:
    """Restriction of a query to a set of project ids. An empty set matches nothing."""
    project_ids: frozenset[str]

    def __post_init__(self):
        object.__setattr__(self, "project_ids", frozenset(self.project_ids))

    @property
    def matches_nothing(self) -> bool:
        return not self.project_ids

    def as_dict(self, field: str = "project_id") -> dict[str, Any]:
        return {field: {"in": sorted(self.project_ids)}}

    def apply(self, stmt: Select, column: Any) -> Select:
        # IN () compiles to a false expression, so an empty set returns no rows
        return stmt.where(column.in_(sorted(self.project_ids)))


def get_project_filter(context: AccessContext, resource: Resource | str = Resource.PROJECT) -> Optional[ProjectFilter]:
    """
    None when the role sees every project for the resource. For "assigned" a
    filter on the member's accessible projects. For "none" and "own" a filter
    matching nothing: "own" records are selected with the owner filter instead.
    Never None for a restricted role.
    """
    scope = context.scope_for(resource)
    if scope is Scope.ALL:
        return None
    if scope is not Scope.ASSIGNED:
        return ProjectFilter(frozenset())
    return ProjectFilter(context.accessible_project_ids or frozenset())


def apply_project_filter(
    stmt: Select,
    column: Any,
    context: AccessContext,
    resource: Resource | str = Resource.PROJECT,
) -> Select:
    project_filter = get_project_filter(context, resource)
    if project_filter is None:
        return stmt
    return project_filter.apply(stmt, column)


def get_owner_filter(
    context: AccessContext,
    resource: Resource | str,
    field: str = "user_id",
) -> Optional[dict[str, str]]:
    """Owner condition for roles whose scope on the resource is "own"."""
    if context.scope_for(resource) is not Scope.OWN:
        return None
    return {field: context.user_id}


def apply_owner_filter(stmt: Select, column: Any, context: AccessContext, resource: Resource | str) -> Select:
    if context.scope_for(resource) is not Scope.OWN:
        return stmt
    return stmt.where(column == context.user_id)

"""
Route guards.

Each factory returns a FastAPI dependency that resolves the access context,
checks it, and either returns the context or raises the matching AppError so
the request stops with a 4xx before the handler runs.

Usage:
    @router.get("/projects/{project_id}")
    async def get_project(
        project_id: str,
        context: AccessContext = Depends(require_resource_access(Resource.PROJECT, Action.READ)),
    ):
        ...

Resource, action and role arguments are coerced through their enums when the
guard is declared, so a typo fails at import time instead of denying at
request time.
"""
from typing import Any, Optional

from fastapi import Depends
from starlette.requests import Request

from app.core.errors import (
    ActionNotAllowedError,
    BadRequestError,
    ForbiddenError,
    NoProjectAccessError,
)
from app.features.access.catalog import Action, Resource, RoleName, Scope
from app.features.access.context import AccessContext
from app.features.access.dependencies import get_access_context
from app.utils import get_logger


log = get_logger(__name__)


_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _lookup(source: Any, names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = source.get(name)
        if value not in (None, ""):
            return str(value)
    return None


async def extract_project_id(request: Request, param_name: str = "project_id") -> Optional[str]:
    """
    Find the project id of a request.

    Looks in path parameters, then the query string, then a JSON object body.
    Both ``param_name`` and its camelCase form (``projectId``) are accepted.
    """
    names = (param_name, _camel_case(param_name))

    project_id = _lookup(request.path_params, names) or _lookup(request.query_params, names)
    if project_id is not None:
        return project_id

    if request.method not in _BODY_METHODS:
        return None
    try:
        body = await request.json()
    except ValueError:
        # Empty or non-JSON body
        return None
    if isinstance(body, dict):
        return _lookup(body, names)
    return None


def _deny_project(context: AccessContext, project_id: str) -> NoProjectAccessError:
    log.info(
        "Denied project %s to user %s (%s) in organization %s",
        project_id, context.user_id, context.role, context.organization_id,
    )
    return NoProjectAccessError()


def require_role(*allowed: RoleName | str):
    """
    Require one of the given system roles.

    Raises:
        ForbiddenError: 403 if the member's role is not listed
    """
    allowed_names = frozenset(RoleName(role).value for role in allowed)

    async def role_dependency(context: AccessContext = Depends(get_access_context)) -> AccessContext:
        if context.role not in allowed_names:
            log.info(
                "Denied role %s for user %s, requires one of %s",
                context.role, context.user_id, sorted(allowed_names),
            )
            raise ForbiddenError()
        return context

    return role_dependency


def require_permission(resource: Resource | str, action: Action | str):
    """
    Require a (resource, action) permission with a scope other than none.

    Raises:
        ActionNotAllowedError: 403 if the role lacks the permission
    """
    resource = Resource(resource)
    action = Action(action)

    async def permission_dependency(context: AccessContext = Depends(get_access_context)) -> AccessContext:
        if not context.can(resource, action):
            log.info(
                "Denied %s.%s for user %s (%s) in organization %s",
                resource.value, action.value, context.user_id, context.role, context.organization_id,
            )
            raise ActionNotAllowedError(f"You are not allowed to {action.value} {resource.value}")
        return context

    return permission_dependency


def require_project_access(param_name: str = "project_id", resource: Resource | str = Resource.PROJECT):
    """
    Require access to the project named in the request.

    Roles with scope "all" on the resource pass without looking at the id.
    Otherwise the id must be present and in the member's accessible set.

    Raises:
        BadRequestError: 400 if the project id is missing
        NoProjectAccessError: 403 if the project is not accessible
    """
    resource = Resource(resource)

    async def project_access_dependency(
        request: Request,
        context: AccessContext = Depends(get_access_context),
    ) -> AccessContext:
        scope = context.scope_for(resource)
        if scope is Scope.ALL:
            return context
        if scope is Scope.NONE:
            log.info("Denied %s for user %s (%s): no scope", resource.value, context.user_id, context.role)
            raise NoProjectAccessError()

        project_id = await extract_project_id(request, param_name)
        if project_id is None:
            raise BadRequestError("Project ID is required")

        # An "own" scope without a loaded set has no project list to check against
        if context.accessible_project_ids is None or project_id not in context.accessible_project_ids:
            raise _deny_project(context, project_id)
        return context

    return project_access_dependency


def require_resource_access(
    resource: Resource | str,
    action: Action | str,
    param_name: str = "project_id",
):
    """
    Combined permission and scope check.

    1. The role must be allowed the action on the resource.
    2. Scope "all" passes.
    3. Scope "assigned" checks the project id when the request names one.
       Without an id the handler is expected to apply get_project_filter.
    4. Scope "own" is left to the handler (owner filter), unless the member's
       accessible set was loaded, in which case a named project is checked.

    Raises:
        ActionNotAllowedError: 403 if the role lacks the permission
        NoProjectAccessError: 403 if the named project is not accessible
    """
    resource = Resource(resource)
    action = Action(action)

    async def resource_access_dependency(
        request: Request,
        context: AccessContext = Depends(get_access_context),
    ) -> AccessContext:
        if not context.can(resource, action):
            log.info(
                "Denied %s.%s for user %s (%s) in organization %s",
                resource.value, action.value, context.user_id, context.role, context.organization_id,
            )
            raise ActionNotAllowedError(f"You are not allowed to {action.value} {resource.value}")

        scope = context.scope_for(resource)
        if scope is Scope.ALL:
            return context

        project_id = await extract_project_id(request, param_name)
        if project_id is None:
            return context

        if scope is Scope.ASSIGNED or context.accessible_project_ids is not None:
            accessible = context.accessible_project_ids or frozenset()
            if project_id not in accessible:
                raise _deny_project(context, project_id)
        return context

    return resource_access_dependency

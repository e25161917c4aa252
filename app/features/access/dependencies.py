"""
Access-control dependency injection functions.

The catalog, role table and resolver live on ``app.state`` so tests and
deployments can swap them without touching module globals.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from app.core import config
from app.core.database.engine import get_db
from app.features.access.catalog import PermissionCatalog
from app.features.access.context import AccessContext, ContextResolver
from app.features.access.identity import build_identity_source
from app.features.access.policy import AccessPolicy
from app.utils import get_logger


log = get_logger(__name__)


def build_catalog() -> PermissionCatalog:
    """Load the catalog from PERMISSION_CATALOG_FILE, or the built-in one."""
    if config.PERMISSION_CATALOG_FILE:
        log.info("Loading permission catalog from %s", config.PERMISSION_CATALOG_FILE)
        return PermissionCatalog.from_file(config.PERMISSION_CATALOG_FILE)
    return PermissionCatalog.default()


def get_catalog(request: Request) -> PermissionCatalog:
    catalog = getattr(request.app.state, "catalog", None)
    if catalog is None:
        catalog = build_catalog()
        request.app.state.catalog = catalog
    return catalog


def get_access_policy(request: Request) -> AccessPolicy:
    access_policy = getattr(request.app.state, "access_policy", None)
    if access_policy is None:
        access_policy = AccessPolicy.default(get_catalog(request))
        request.app.state.access_policy = access_policy
    return access_policy


def get_context_resolver(request: Request) -> ContextResolver:
    resolver = getattr(request.app.state, "context_resolver", None)
    if resolver is None:
        resolver = ContextResolver(build_identity_source(), get_access_policy(request))
        request.app.state.context_resolver = resolver
    return resolver


async def get_access_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AccessContext:
    """
    Resolve the access context for the current request.

    Every guard depends on this, so it runs before any of them. The result is
    kept on ``request.state`` and reused by later lookups in the same request.

    Raises:
        UnauthorizedError: 401 if the identity token is missing or invalid
        MissingOrgContextError: 403 if the organization or user id is missing
    """
    context = getattr(request.state, "access_context", None)
    if context is not None:
        return context

    context = await get_context_resolver(request).resolve(request, db)
    request.state.access_context = context
    return context

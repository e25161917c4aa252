"""
Seed script to populate the permission catalog and system roles.

Run this script after database initialization to create:
- The catalog permissions (built-in, or PERMISSION_CATALOG_FILE)
- The system roles (ADMIN, MANAGER, ACCOUNTANT, SUPERVISOR, CLIENT) of an
  organization, with their permissions and scopes

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --organization-id 01J...
    uv run python -m scripts.seed_permissions --create-organization "Acme Builders"
"""
import argparse
import asyncio
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.access.catalog import PermissionCatalog
from app.features.access.dependencies import build_catalog
from app.features.access.policy import AccessPolicy
from app.features.organizations.models import Organization
from app.features.permissions.models import Role
from app.features.permissions.service import PermissionService, RoleService
from app.utils import get_logger


log = get_logger(__name__)


async def seed_permissions(db: AsyncSession, catalog: PermissionCatalog) -> int:
    """
    Create catalog permissions.

    Returns:
        Number of permissions created
    """
    log.info("Syncing %d catalog permissions...", len(catalog))
    return await PermissionService(db).sync_catalog(catalog)


async def seed_roles(db: AsyncSession, organization_id: str, access_policy: AccessPolicy) -> list[Role]:
    """
    Create the organization's system roles and assign permissions.

    Args:
        db: Database session
        organization_id: Organization receiving the roles
        access_policy: Role table the roles are created from
    """
    log.info("Creating system roles for organization %s...", organization_id)
    return await RoleService(db).ensure_system_roles(organization_id, access_policy)


async def main(organization_id: Optional[str] = None, organization_name: Optional[str] = None):
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    catalog = build_catalog()
    access_policy = AccessPolicy.default(catalog)

    # Get database session
    async for db in get_db():
        try:
            await seed_permissions(db, catalog)

            if organization_name:
                organization = Organization(name=organization_name)
                db.add(organization)
                await db.commit()
                organization_id = organization.id
                log.info("Created organization '%s' (%s)", organization_name, organization_id)

            if organization_id:
                if await db.get(Organization, organization_id) is None:
                    raise SystemExit(f"Organization {organization_id} not found")
                roles = await seed_roles(db, organization_id, access_policy)
                log.info("System roles:")
                for role in roles:
                    log.info("  - %s: %d permissions", role.name, len(role.permissions))

            log.info("Permission seeding completed successfully!")

        except Exception as e:
            log.error("Error seeding permissions: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed permissions and system roles")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--organization-id", help="Seed system roles for this organization")
    group.add_argument("--create-organization", metavar="NAME", help="Create an organization and seed its roles")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(main(organization_id=args.organization_id, organization_name=args.create_organization))

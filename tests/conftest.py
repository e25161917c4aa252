"""Test configuration and fixtures."""
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database.engine import enable_sqlite_foreign_keys, get_db, init_db
from app.features.access.catalog import PermissionCatalog
from app.features.access.context import ContextResolver
from app.features.access.identity import HeaderIdentitySource
from app.features.access.policy import AccessPolicy
from app.features.organizations.models import Organization, OrganizationMember, ProjectAccess
from app.features.permissions.service import PermissionService, RoleService
from app.features.projects.models import Project
from app.features.users.models import User


@pytest.fixture
def catalog():
    """Built-in permission catalog."""
    return PermissionCatalog.default()


@pytest.fixture
def access_policy(catalog):
    """System role table for the built-in catalog."""
    return AccessPolicy.default(catalog)


@pytest.fixture
async def engine(tmp_path):
    """Per-test SQLite database with foreign keys enforced."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    enable_sqlite_foreign_keys(engine)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    """Session for arranging data and asserting on it directly."""
    async with session_factory() as session:
        yield session


async def create_member(db, organization, role, name, project_ids=()):
    user = User(name=name, email=f"{name.lower()}@example.com")
    db.add(user)
    await db.flush()
    member = OrganizationMember(organization_id=organization.id, user_id=user.id, role_id=role.id)
    member.project_accesses = [ProjectAccess(project_id=project_id) for project_id in project_ids]
    db.add(member)
    await db.commit()
    return member


@pytest.fixture
async def seeded(db, catalog, access_policy):
    """
    One organization with the system roles, three projects and a member per role.

    SUPERVISOR is assigned to p1 and p2; CLIENT has no project access.
    A second organization owns the "foreign" project.
    """
    await PermissionService(db).sync_catalog(catalog)

    organization = Organization(name="Acme Builders")
    other_organization = Organization(name="Other Co")
    db.add_all([organization, other_organization])
    await db.commit()

    roles = await RoleService(db).ensure_system_roles(organization.id, access_policy)
    roles = {role.name: role for role in roles}

    projects = SimpleNamespace(
        p1=Project(organization_id=organization.id, name="Riverside Villa"),
        p2=Project(organization_id=organization.id, name="Lakeview Towers"),
        p3=Project(organization_id=organization.id, name="Hilltop School"),
        foreign=Project(organization_id=other_organization.id, name="Elsewhere Mall"),
    )
    db.add_all([projects.p1, projects.p2, projects.p3, projects.foreign])
    await db.commit()

    members = {
        "ADMIN": await create_member(db, organization, roles["ADMIN"], "Asha"),
        "MANAGER": await create_member(db, organization, roles["MANAGER"], "Manoj"),
        "ACCOUNTANT": await create_member(db, organization, roles["ACCOUNTANT"], "Anita"),
        "SUPERVISOR": await create_member(
            db, organization, roles["SUPERVISOR"], "Suresh", [projects.p1.id, projects.p2.id]
        ),
        "CLIENT": await create_member(db, organization, roles["CLIENT"], "Chitra"),
    }

    return SimpleNamespace(
        organization=organization,
        other_organization=other_organization,
        roles=roles,
        projects=projects,
        members=members,
    )


@pytest.fixture
def as_role(seeded):
    """Build identity headers for the seeded member holding a role."""
    def headers(role, **overrides):
        member = seeded.members.get(role)
        values = {
            "x-organization-id": seeded.organization.id,
            "x-user-id": member.user_id if member else "01UNKNOWNUSER0000000000000",
            "x-user-role": role,
        }
        values.update({f"x-{key.replace('_', '-')}": value for key, value in overrides.items()})
        return values

    return headers


@pytest.fixture
def app(session_factory, catalog, access_policy):
    """FastAPI app on the test database, trusting identity headers."""
    from app.main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.state.catalog = catalog
    fastapi_app.state.access_policy = access_policy
    fastapi_app.state.context_resolver = ContextResolver(HeaderIdentitySource(), access_policy)
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

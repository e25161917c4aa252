import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

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
from app.features.permissions.audit import AuditActor
from app.features.permissions.models import AuditLog, Permission, Role
from app.features.permissions.schemas import RoleCreate, RoleUpdate
from app.features.permissions.service import PermissionService, RoleService, UnknownPermissionPolicy


async def permission_ids(db, *keys):
    permissions = await PermissionService(db).find_by_keys(keys)
    assert len(permissions) == len(keys)
    return [permission.id for permission in permissions]


# ============================================================================
# Permission catalog
# ============================================================================

async def test_sync_catalog_is_repeatable(db, catalog):
    service = PermissionService(db)

    assert await service.sync_catalog(catalog) == len(catalog)
    assert await service.sync_catalog(catalog) == 0

    total = await db.scalar(select(func.count()).select_from(Permission))
    assert total == len(catalog)


async def test_find_all_is_ordered_by_category_then_name(db, seeded):
    permissions = await PermissionService(db).find_all()

    ordering = [(permission.category, permission.name) for permission in permissions]
    assert ordering == sorted(ordering)

    grouped = await PermissionService(db).find_all_grouped_by_category()
    assert {p.key for p in grouped["Expenses"]} == {
        "expense.create", "expense.read", "expense.update", "expense.delete", "expense.approve",
    }


# ============================================================================
# Role registry
# ============================================================================

async def test_create_role_with_permissions_and_scopes(db, seeded):
    ids = await permission_ids(db, "stage.read", "stage.update", "document.create")
    actor = AuditActor(user_id=seeded.members["ADMIN"].user_id, ip_address="10.0.0.7")

    role = await RoleService(db).create(
        seeded.organization.id,
        "  Site Engineer  ",
        description="Runs a site",
        permission_ids=ids,
        scopes={"stage": "assigned", "document": "own"},
        actor=actor,
    )

    assert role.name == "Site Engineer"
    assert not role.is_system_role
    assert {p.id for p in role.permissions} == set(ids)
    assert {row.resource: row.scope for row in role.scopes} == {"stage": "assigned", "document": "own"}

    audit = (await db.execute(select(AuditLog).where(AuditLog.resource_id == role.id))).scalar_one()
    assert (audit.action, audit.resource_type, audit.user_id) == ("create", "role", actor.user_id)
    assert audit.ip_address == "10.0.0.7"


async def test_update_round_trips_permission_set(db, seeded):
    service = RoleService(db)
    role = await service.create(seeded.organization.id, "Site Engineer", permission_ids=await permission_ids(db, "stage.read"))

    wanted = await permission_ids(db, "document.read", "document.create", "stage.update")
    await service.update(role.id, seeded.organization.id, permission_ids=list(reversed(wanted)))

    reread = await service.find_by_id(role.id, seeded.organization.id)
    assert {p.id for p in reread.permissions} == set(wanted)


async def test_update_replaces_scopes(db, seeded):
    service = RoleService(db)
    role = await service.create(
        seeded.organization.id, "Site Engineer", scopes={"stage": "assigned", "document": "all"}
    )

    role = await service.update(role.id, seeded.organization.id, scopes={"stage": "all", "boq": "assigned"})

    assert {row.resource: row.scope for row in role.scopes} == {"stage": "all", "boq": "assigned"}


async def test_role_name_validation(db, seeded):
    service = RoleService(db)

    with pytest.raises(RoleValidationError) as excinfo:
        await service.create(seeded.organization.id, "   ")
    assert excinfo.value.code == "VALIDATION_ERROR"

    with pytest.raises(RoleValidationError):
        await service.create(seeded.organization.id, "x" * 101)


async def test_duplicate_role_name_conflicts(db, seeded):
    service = RoleService(db)
    await service.create(seeded.organization.id, "Site Engineer")

    with pytest.raises(ConflictError):
        await service.create(seeded.organization.id, "Site Engineer")

    # Names are unique per organization only
    other = await service.create(seeded.other_organization.id, "Site Engineer")
    assert other.organization_id == seeded.other_organization.id


async def test_system_role_names_are_reserved(db, seeded):
    service = RoleService(db)

    # The other organization has no system roles, the names are still taken
    for name in ("ADMIN", "Manager", "client"):
        with pytest.raises(RoleValidationError, match="reserved"):
            await service.create(seeded.other_organization.id, name)

    role = await service.create(seeded.organization.id, "Site Engineer")
    with pytest.raises(RoleValidationError, match="reserved"):
        await service.update(role.id, seeded.organization.id, name="SUPERVISOR")


def test_role_schema_uses_configured_name_length():
    RoleCreate(name="x" * config.ROLE_NAME_MAX_LENGTH)
    RoleUpdate(name="x" * config.ROLE_NAME_MAX_LENGTH)

    with pytest.raises(ValidationError):
        RoleCreate(name="x" * (config.ROLE_NAME_MAX_LENGTH + 1))
    with pytest.raises(ValidationError):
        RoleUpdate(name="x" * (config.ROLE_NAME_MAX_LENGTH + 1))


async def test_system_role_cannot_be_renamed(db, seeded):
    service = RoleService(db)
    admin = seeded.roles["ADMIN"]

    with pytest.raises(SystemRoleRenameError) as excinfo:
        await service.update(admin.id, seeded.organization.id, name="SuperAdmin")
    assert excinfo.value.code == "SYSTEM_ROLE_RENAME"

    ids = await permission_ids(db, "project.read", "project.update")
    updated = await service.update(admin.id, seeded.organization.id, name="ADMIN", permission_ids=ids)

    assert updated.name == "ADMIN"
    assert {p.id for p in updated.permissions} == set(ids)


async def test_custom_role_can_be_renamed(db, seeded):
    service = RoleService(db)
    role = await service.create(seeded.organization.id, "Site Engineer")

    renamed = await service.update(role.id, seeded.organization.id, name="Site Lead", description="Leads a site")

    assert renamed.name == "Site Lead"
    assert renamed.description == "Leads a site"


async def test_system_role_cannot_be_deleted(db, seeded):
    with pytest.raises(SystemRoleDeleteError):
        await RoleService(db).delete(seeded.roles["CLIENT"].id, seeded.organization.id)


async def test_role_with_members_cannot_be_deleted(db, seeded):
    service = RoleService(db)
    role = await service.create(seeded.organization.id, "Site Engineer")
    member = seeded.members["CLIENT"]
    member.role = role
    await db.commit()

    with pytest.raises(RoleHasMembersError) as excinfo:
        await service.delete(role.id, seeded.organization.id)
    assert excinfo.value.details == {"member_count": 1}


async def test_delete_unused_role(db, seeded):
    service = RoleService(db)
    role = await service.create(
        seeded.organization.id, "Site Engineer",
        permission_ids=await permission_ids(db, "stage.read"),
        scopes={"stage": "assigned"},
    )

    await service.delete(role.id, seeded.organization.id)

    with pytest.raises(NotFoundError):
        await service.find_by_id(role.id, seeded.organization.id)


async def test_other_organizations_roles_are_invisible(db, seeded):
    service = RoleService(db)
    role = await service.create(seeded.other_organization.id, "Estimator")

    with pytest.raises(NotFoundError):
        await service.find_by_id(role.id, seeded.organization.id)
    with pytest.raises(NotFoundError):
        await service.update(role.id, seeded.organization.id, description="mine now")


async def test_unknown_permission_ids_are_rejected_by_default(db, seeded):
    service = RoleService(db, unknown_permissions=UnknownPermissionPolicy.REJECT)
    ids = await permission_ids(db, "stage.read")

    with pytest.raises(UnknownPermissionError) as excinfo:
        await service.create(seeded.organization.id, "Site Engineer", permission_ids=ids + ["01NOPE0000000000000000000"])

    assert excinfo.value.details == {"permission_ids": ["01NOPE0000000000000000000"]}
    assert await db.scalar(select(Role.id).where(Role.name == "Site Engineer")) is None


async def test_unknown_permission_ids_can_be_ignored(db, seeded):
    service = RoleService(db, unknown_permissions="ignore")
    ids = await permission_ids(db, "stage.read")

    role = await service.create(seeded.organization.id, "Site Engineer", permission_ids=ids + ["01NOPE0000000000000000000"])
    assert [p.id for p in role.permissions] == ids

    role = await service.update(role.id, seeded.organization.id, permission_ids=["01NOPE0000000000000000000"])
    assert role.permissions == []


async def test_find_all_orders_system_roles_first(db, seeded):
    service = RoleService(db)
    await service.create(seeded.organization.id, "Estimator", description="Prepares BOQ estimates")
    await service.create(seeded.organization.id, "Architect")

    roles, total = await service.find_all(seeded.organization.id)

    assert total == 7
    assert [role.name for role in roles] == [
        "ACCOUNTANT", "ADMIN", "CLIENT", "MANAGER", "SUPERVISOR", "Architect", "Estimator",
    ]

    roles, total = await service.find_all(seeded.organization.id, search="boq")
    assert total == 1
    assert roles[0].name == "Estimator"

    roles, total = await service.find_all(seeded.organization.id, skip=5, limit=1)
    assert total == 7
    assert [role.name for role in roles] == ["Architect"]


async def test_member_counts(db, seeded):
    counts = await RoleService(db).member_counts([role.id for role in seeded.roles.values()], seeded.organization.id)

    assert counts == {role.id: 1 for role in seeded.roles.values()}


async def test_ensure_system_roles_is_repeatable(db, seeded, access_policy):
    service = RoleService(db)
    admin = seeded.roles["ADMIN"]
    await service.update(admin.id, seeded.organization.id, permission_ids=[])

    roles = await service.ensure_system_roles(seeded.organization.id, access_policy)

    assert sorted(role.name for role in roles) == ["ACCOUNTANT", "ADMIN", "CLIENT", "MANAGER", "SUPERVISOR"]
    # Existing system roles keep their edits
    assert next(role for role in roles if role.name == "ADMIN").permissions == []


async def test_seeded_roles_match_policy(seeded, access_policy):
    supervisor = seeded.roles["SUPERVISOR"]

    assert supervisor.is_system_role
    assert sorted(p.key for p in supervisor.permissions) == access_policy.get("SUPERVISOR").permission_keys()
    assert {row.resource: row.scope for row in supervisor.scopes}["advance"] == "own"


# ============================================================================
# HTTP API
# ============================================================================

async def test_roles_api_lifecycle(client, db, seeded, as_role):
    ids = await permission_ids(db, "stage.read", "document.read")
    headers = as_role("ADMIN")

    response = await client.post(
        "/roles",
        json={"name": "Site Engineer", "permission_ids": ids, "scopes": {"stage": "assigned"}},
        headers=headers,
    )
    assert response.status_code == 201
    role = response.json()
    assert role["scopes"] == {"stage": "assigned"}
    assert {p["key"] for p in role["permissions"]} == {"stage.read", "document.read"}
    assert role["member_count"] == 0

    response = await client.put(f"/roles/{role['id']}", json={"permission_ids": ids[:1]}, headers=headers)
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["permissions"]] == ids[:1]

    response = await client.get("/roles", params={"page": 1, "limit": 5}, headers=headers)
    body = response.json()
    assert (body["total"], body["page"], body["page_size"], body["pages"]) == (6, 1, 5, 2)
    assert body["items"][0]["member_count"] == 1

    response = await client.delete(f"/roles/{role['id']}", headers=headers)
    assert response.status_code == 204

    response = await client.get(f"/roles/{role['id']}", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


async def test_system_role_edit_applies_to_members(client, seeded, as_role):
    supervisor_role = seeded.roles["SUPERVISOR"]
    kept = [p.id for p in supervisor_role.permissions if p.key != "expense.create"]
    headers = as_role("SUPERVISOR")
    check = {"resource": "expense", "action": "create", "project_id": seeded.projects.p1.id}

    response = await client.post("/access/check", json=check, headers=headers)
    assert response.json()["allowed"] is True

    response = await client.put(
        f"/roles/{supervisor_role.id}", json={"permission_ids": kept}, headers=as_role("ADMIN")
    )
    assert response.status_code == 200
    assert "expense.create" not in {p["key"] for p in response.json()["permissions"]}

    response = await client.get("/access/me", headers=headers)
    assert "expense.create" not in response.json()["permissions"]
    assert "expense.read" in response.json()["permissions"]

    response = await client.post("/access/check", json=check, headers=headers)
    assert response.json() == {
        "allowed": False,
        "scope": "assigned",
        "reason": "Role SUPERVISOR cannot create expense",
    }

    # Scope edits apply the same way
    response = await client.put(
        f"/roles/{supervisor_role.id}", json={"scopes": {"project": "all", "expense": "assigned"}},
        headers=as_role("ADMIN"),
    )
    assert response.status_code == 200
    response = await client.get("/projects", headers=headers)
    assert len(response.json()) == 3


async def test_roles_api_rejects_system_rename(client, seeded, as_role):
    response = await client.put(
        f"/roles/{seeded.roles['ADMIN'].id}", json={"name": "SuperAdmin"}, headers=as_role("ADMIN")
    )

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": {"message": "Cannot rename system role", "code": "SYSTEM_ROLE_RENAME"},
    }


async def test_roles_api_requires_role_permissions(client, seeded, as_role):
    response = await client.post("/roles", json={"name": "Site Engineer"}, headers=as_role("MANAGER"))
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ACTION_NOT_ALLOWED"

    response = await client.get("/roles", headers=as_role("MANAGER"))
    assert response.status_code == 200

    response = await client.get("/roles", headers=as_role("CLIENT"))
    assert response.status_code == 403


async def test_roles_api_unknown_permission(client, seeded, as_role):
    response = await client.post(
        "/roles", json={"name": "Site Engineer", "permission_ids": ["01NOPE0000000000000000000"]},
        headers=as_role("ADMIN"),
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "UNKNOWN_PERMISSION"
    assert response.json()["error"]["details"] == {"permission_ids": ["01NOPE0000000000000000000"]}


async def test_roles_api_validation_envelope(client, seeded, as_role):
    response = await client.post("/roles", json={"name": "", "scopes": {"stage": "sometimes"}}, headers=as_role("ADMIN"))

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "name" in error["details"]


async def test_permissions_api(client, seeded, as_role, catalog):
    response = await client.get("/permissions", headers=as_role("CLIENT"))
    assert response.status_code == 200
    assert len(response.json()) == len(catalog)

    response = await client.get("/permissions/grouped", headers=as_role("CLIENT"))
    grouped = response.json()
    assert set(grouped) == set(catalog.grouped_by_category())
    assert {p["key"] for p in grouped["Team"]} == {"member.create", "member.read", "member.update", "member.delete"}

import pytest
from sqlalchemy import func, select

from app.core.errors import ConflictError, NotFoundError
from app.features.organizations.models import ProjectAccess
from app.features.organizations.service import MemberService
from app.features.permissions.models import AuditLog
from app.features.users.models import User


@pytest.fixture
async def newcomer(db):
    user = User(name="Nikhil", email="nikhil@example.com")
    db.add(user)
    await db.commit()
    return user


async def test_add_member_with_projects(db, seeded, newcomer):
    projects = seeded.projects

    member = await MemberService(db).add(
        seeded.organization.id,
        newcomer.id,
        seeded.roles["SUPERVISOR"].id,
        project_ids=[projects.p3.id, projects.p1.id, projects.p1.id],
    )

    assert member.role.name == "SUPERVISOR"
    assert member.project_ids == sorted([projects.p1.id, projects.p3.id])


async def test_add_member_twice_conflicts(db, seeded):
    existing = seeded.members["CLIENT"]

    with pytest.raises(ConflictError):
        await MemberService(db).add(seeded.organization.id, existing.user_id, seeded.roles["CLIENT"].id)


async def test_add_member_validates_references(db, seeded, newcomer):
    service = MemberService(db)

    with pytest.raises(NotFoundError, match="User not found"):
        await service.add(seeded.organization.id, "01NOUSER000000000000000000", seeded.roles["CLIENT"].id)

    with pytest.raises(NotFoundError, match="Role not found"):
        await service.add(seeded.organization.id, newcomer.id, "01NOROLE000000000000000000")

    # Projects of another organization cannot be granted
    with pytest.raises(NotFoundError) as excinfo:
        await service.add(
            seeded.organization.id, newcomer.id, seeded.roles["CLIENT"].id,
            project_ids=[seeded.projects.foreign.id],
        )
    assert excinfo.value.details == {"project_ids": [seeded.projects.foreign.id]}


async def test_project_access_lifecycle(db, seeded):
    service = MemberService(db)
    organization_id = seeded.organization.id
    projects = seeded.projects
    member = seeded.members["CLIENT"]

    member = await service.set_project_access(member.id, organization_id, [projects.p1.id, projects.p2.id])
    assert member.project_ids == sorted([projects.p1.id, projects.p2.id])

    member = await service.set_project_access(member.id, organization_id, [projects.p2.id, projects.p3.id])
    assert member.project_ids == sorted([projects.p2.id, projects.p3.id])

    member = await service.grant_project_access(member.id, organization_id, projects.p1.id)
    member = await service.grant_project_access(member.id, organization_id, projects.p1.id)
    assert len(member.project_ids) == 3

    member = await service.revoke_project_access(member.id, organization_id, projects.p3.id)
    assert member.project_ids == sorted([projects.p1.id, projects.p2.id])

    with pytest.raises(NotFoundError, match="Project access not found"):
        await service.revoke_project_access(member.id, organization_id, projects.p3.id)


async def test_change_role_is_audited(db, seeded):
    member = seeded.members["CLIENT"]

    member = await MemberService(db).change_role(member.id, seeded.organization.id, seeded.roles["ACCOUNTANT"].id)

    assert member.role.name == "ACCOUNTANT"
    audit = (await db.execute(
        select(AuditLog).where(AuditLog.resource_type == "member", AuditLog.resource_id == member.id)
    )).scalar_one()
    assert audit.details == {"role": {"from": "CLIENT", "to": "ACCOUNTANT"}}


async def test_removing_member_removes_project_access(db, seeded):
    supervisor = seeded.members["SUPERVISOR"]

    await MemberService(db).remove(supervisor.id, seeded.organization.id)

    remaining = await db.scalar(
        select(func.count()).select_from(ProjectAccess).where(ProjectAccess.member_id == supervisor.id)
    )
    assert remaining == 0


async def test_members_are_scoped_to_organization(db, seeded):
    with pytest.raises(NotFoundError, match="Member not found"):
        await MemberService(db).find_by_id(seeded.members["ADMIN"].id, seeded.other_organization.id)


# HTTP API

async def test_members_api(client, seeded, newcomer, as_role):
    headers = as_role("ADMIN")

    response = await client.post(
        "/members",
        json={"user_id": newcomer.id, "role_id": seeded.roles["SUPERVISOR"].id, "project_ids": [seeded.projects.p3.id]},
        headers=headers,
    )
    assert response.status_code == 201
    member = response.json()
    assert member["role_name"] == "SUPERVISOR"
    assert member["project_ids"] == [seeded.projects.p3.id]

    response = await client.post(
        "/members", json={"user_id": newcomer.id, "role_id": seeded.roles["CLIENT"].id}, headers=headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"

    response = await client.post(
        f"/members/{member['id']}/projects", json={"project_id": seeded.projects.p1.id}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["project_ids"] == sorted([seeded.projects.p1.id, seeded.projects.p3.id])

    response = await client.delete(f"/members/{member['id']}/projects/{seeded.projects.p3.id}", headers=headers)
    assert response.json()["project_ids"] == [seeded.projects.p1.id]

    # The new member now works on p1 only
    response = await client.get("/projects", headers=as_role("SUPERVISOR", user_id=newcomer.id))
    assert [project["id"] for project in response.json()] == [seeded.projects.p1.id]

    response = await client.patch(f"/members/{member['id']}", json={"role_id": seeded.roles["MANAGER"].id}, headers=headers)
    assert response.json()["role_name"] == "MANAGER"

    response = await client.get("/members", headers=headers)
    assert len(response.json()) == 6

    response = await client.delete(f"/members/{member['id']}", headers=headers)
    assert response.status_code == 204


async def test_members_api_permissions(client, seeded, as_role):
    supervisor = seeded.members["SUPERVISOR"]

    response = await client.get("/members", headers=as_role("ACCOUNTANT"))
    assert response.status_code == 200

    response = await client.put(
        f"/members/{supervisor.id}/projects", json={"project_ids": []}, headers=as_role("MANAGER")
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ACTION_NOT_ALLOWED"

    response = await client.get(f"/members/{supervisor.id}/projects", headers=as_role("SUPERVISOR"))
    assert response.status_code == 403


async def test_deleting_project_removes_member_access(client, seeded, as_role):
    p1 = seeded.projects.p1

    response = await client.delete(f"/projects/{p1.id}", headers=as_role("MANAGER"))
    assert response.status_code == 204

    response = await client.get("/access/me", headers=as_role("SUPERVISOR"))
    assert response.json()["accessible_project_ids"] == [seeded.projects.p2.id]

    response = await client.get(f"/members/{seeded.members['SUPERVISOR'].id}/projects", headers=as_role("ADMIN"))
    assert response.json()["project_ids"] == [seeded.projects.p2.id]

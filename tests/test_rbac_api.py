"""Tests for role management endpoints."""
import pytest

from app.features.rbac import table
from tests.conftest import auth


@pytest.fixture
async def org(make_org):
    return await make_org("acme")


@pytest.fixture
async def admin(make_user):
    return await make_user("admin")


@pytest.fixture
async def manager(make_user, add_member, activate, org):
    user = await make_user("manager")
    await add_member(org, user, "manager")
    return await activate(user, org)


async def role_by_name(client, admin, name: str) -> dict:
    response = await client.get("/rbac/roles", headers=auth(admin))
    return next(role for role in response.json() if role["name"] == name)


class TestRoles:
    """Role listing, visibility and edits."""

    async def test_admin_sees_all_roles(self, client, admin) -> None:
        response = await client.get("/rbac/roles", headers=auth(admin))
        assert response.status_code == 200
        assert sorted(role["name"] for role in response.json()) == ["admin", "manager", "member"]

    async def test_manager_sees_lower_roles_only(self, client, manager, admin) -> None:
        response = await client.get("/rbac/roles", headers=auth(manager))
        assert [role["name"] for role in response.json()] == ["member"]

        admin_role = await role_by_name(client, admin, "admin")
        hidden = await client.get(f"/rbac/roles/{admin_role['id']}", headers=auth(manager))
        assert hidden.status_code == 403

    async def test_member_cannot_read_roles(self, client, make_user) -> None:
        member = await make_user("member")
        response = await client.get("/rbac/roles", headers=auth(member))
        assert response.status_code == 403
        assert response.json() == {"detail": "Action not available"}

    async def test_system_role_is_read_only(self, client, admin) -> None:
        member_role = await role_by_name(client, admin, "member")
        response = await client.put(
            f"/rbac/roles/{member_role['id']}", json={"displayName": "Everyone"}, headers=auth(admin)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "System roles cannot be modified"

        delete = await client.delete(f"/rbac/roles/{member_role['id']}", headers=auth(admin))
        assert delete.status_code == 400

    async def test_custom_role_lifecycle(self, client, admin) -> None:
        created = await client.post(
            "/rbac/roles", json={"name": "Auditor", "displayName": "Auditor"}, headers=auth(admin)
        )
        assert created.status_code == 201
        role = created.json()
        assert role["name"] == "auditor"
        assert role["isSystem"] is False

        duplicate = await client.post(
            "/rbac/roles", json={"name": "auditor", "displayName": "Again"}, headers=auth(admin)
        )
        assert duplicate.status_code == 409

        updated = await client.put(f"/rbac/roles/{role['id']}", json={"color": "green"}, headers=auth(admin))
        assert updated.json()["color"] == "green"

        deleted = await client.delete(f"/rbac/roles/{role['id']}", headers=auth(admin))
        assert deleted.status_code == 204

    async def test_update_rejects_null_color(self, client, admin) -> None:
        created = await client.post(
            "/rbac/roles", json={"name": "reviewer", "displayName": "Reviewer", "color": "blue"}, headers=auth(admin)
        )
        response = await client.put(f"/rbac/roles/{created.json()['id']}", json={"color": None}, headers=auth(admin))
        assert response.status_code == 400
        assert "color" in response.json()

    async def test_update_resets_cached_permission_table(self, client, admin) -> None:
        created = await client.post(
            "/rbac/roles", json={"name": "reviewer", "displayName": "Reviewer"}, headers=auth(admin)
        )
        await client.get("/rbac/roles", headers=auth(admin))
        assert table._cached_table is not None

        response = await client.put(
            f"/rbac/roles/{created.json()['id']}", json={"displayName": "Senior reviewer"}, headers=auth(admin)
        )
        assert response.status_code == 200
        assert table._cached_table is None

    async def test_role_name_format(self, client, admin) -> None:
        response = await client.post(
            "/rbac/roles", json={"name": "bad name!", "displayName": "Bad"}, headers=auth(admin)
        )
        assert response.status_code == 400


class TestRolePermissions:
    """Permission assignment feeds straight into capabilities."""

    async def test_revoking_permission_changes_capabilities(
        self, client, admin, manager, make_user, add_member, org
    ) -> None:
        member = await make_user("member")
        await add_member(org, member)

        before = await client.get(f"/admin/users/{member.id}/capabilities", headers=auth(manager))
        assert before.json()["actions"]["ban"] is True

        manager_role = await role_by_name(client, admin, "manager")
        detail = await client.get(f"/rbac/roles/{manager_role['id']}", headers=auth(admin))
        keep = [p["id"] for p in detail.json()["permissions"] if p["name"] != "user:ban"]

        response = await client.put(
            f"/rbac/roles/{manager_role['id']}/permissions", json={"permissionIds": keep}, headers=auth(admin)
        )
        assert response.status_code == 200
        assert "user:ban" not in {p["name"] for p in response.json()["permissions"]}

        after = await client.get(f"/admin/users/{member.id}/capabilities", headers=auth(manager))
        assert after.json()["actions"]["ban"] is False
        assert after.json()["actions"]["unban"] is False

        ban = await client.post(f"/admin/users/{member.id}/ban", json={}, headers=auth(manager))
        assert ban.status_code == 403

    async def test_unknown_permission_id(self, client, admin) -> None:
        member_role = await role_by_name(client, admin, "member")
        response = await client.put(
            f"/rbac/roles/{member_role['id']}/permissions", json={"permissionIds": ["missing"]}, headers=auth(admin)
        )
        assert response.status_code == 400

    async def test_permissions_listing(self, client, admin) -> None:
        response = await client.get("/rbac/permissions", params={"resource": "session"}, headers=auth(admin))
        assert sorted(p["name"] for p in response.json()) == ["session:read", "session:revoke"]

        grouped = await client.get("/rbac/permissions/grouped", headers=auth(admin))
        assert set(grouped.json()) == {"user", "session", "organization", "rbac"}

    async def test_my_permissions(self, client, manager, make_user) -> None:
        response = await client.get("/rbac/my-permissions", headers=auth(manager))
        data = response.json()["data"]
        assert data == sorted(data)
        assert "user:ban" in data
        assert "user:set-role" not in data

        member = await make_user("member")
        empty = await client.get("/rbac/my-permissions", headers=auth(member))
        assert empty.json() == {"data": []}

    async def test_role_permissions_visibility(self, client, manager) -> None:
        own = await client.get("/rbac/users/manager/permissions", headers=auth(manager))
        assert own.status_code == 200
        assert "ban" in own.json()["user"]

        lower = await client.get("/rbac/users/member/permissions", headers=auth(manager))
        assert lower.json() == {}

        higher = await client.get("/rbac/users/admin/permissions", headers=auth(manager))
        assert higher.status_code == 403


class TestAuditLogs:
    """Audit log access."""

    async def test_admin_only(self, client, admin, manager) -> None:
        assert (await client.get("/rbac/audit-logs", headers=auth(manager))).status_code == 403

        response = await client.get("/rbac/audit-logs", headers=auth(admin))
        assert response.status_code == 200
        body = response.json()
        assert body["page"] == 1
        assert body["pageSize"] == 50

    async def test_role_changes_are_audited(self, client, admin) -> None:
        await client.post("/rbac/roles", json={"name": "support", "displayName": "Support"}, headers=auth(admin))

        response = await client.get(
            "/rbac/audit-logs", params={"resource_type": "role"}, headers=auth(admin)
        )
        items = response.json()["items"]
        assert [item["action"] for item in items] == ["create"]
        assert items[0]["details"] == {"name": "support"}

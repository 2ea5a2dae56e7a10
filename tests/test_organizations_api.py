"""Tests for organization, membership and invitation endpoints."""
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from app.features.organizations.models import OrganizationInvitation, OrganizationMember
from app.features.users.models import User
from app.utils import utcnow
from tests.conftest import auth


DENIED = {"detail": "Action not available"}


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


class TestOrganizations:
    """Create, list, read and switch."""

    async def test_create_makes_creator_admin(self, client, admin, db) -> None:
        response = await client.post("/organizations/", json={"name": "Globex", "slug": "globex"}, headers=auth(admin))
        assert response.status_code == 201
        body = response.json()
        assert body["slug"] == "globex"
        assert body["memberCount"] == 1

        result = await db.execute(select(OrganizationMember).where(OrganizationMember.organization_id == body["id"]))
        member = result.scalar_one()
        assert member.user_id == admin.id
        assert member.role == "admin"

    async def test_duplicate_slug(self, client, admin, org) -> None:
        response = await client.post("/organizations/", json={"name": "Acme 2", "slug": "acme"}, headers=auth(admin))
        assert response.status_code == 409

    async def test_invalid_slug(self, client, admin) -> None:
        response = await client.post("/organizations/", json={"name": "Bad", "slug": "Not A Slug"}, headers=auth(admin))
        assert response.status_code == 400

    async def test_manager_cannot_create(self, client, manager) -> None:
        response = await client.post("/organizations/", json={"name": "Mine", "slug": "mine"}, headers=auth(manager))
        assert response.status_code == 403
        assert response.json() == DENIED

    async def test_check_slug(self, client, admin, org) -> None:
        taken = await client.get("/organizations/check-slug", params={"slug": "acme"}, headers=auth(admin))
        free = await client.get("/organizations/check-slug", params={"slug": "initech"}, headers=auth(admin))
        assert taken.json() == {"slug": "acme", "available": False}
        assert free.json() == {"slug": "initech", "available": True}

    async def test_manager_lists_active_organization(self, client, manager, make_org, org) -> None:
        await make_org("other")
        response = await client.get("/organizations/", headers=auth(manager))
        assert [item["id"] for item in response.json()] == [org.id]

    async def test_admin_lists_all(self, client, admin, make_org, org) -> None:
        await make_org("other")
        response = await client.get("/organizations/", headers=auth(admin))
        assert len(response.json()) == 2

    async def test_manager_out_of_scope(self, client, manager, make_org) -> None:
        other = await make_org("other")
        response = await client.get(f"/organizations/{other.id}", headers=auth(manager))
        assert response.status_code == 403
        assert response.json() == DENIED

    async def test_manager_updates_active_organization(self, client, manager, org) -> None:
        response = await client.patch(f"/organizations/{org.id}", json={"name": "Acme Corp"}, headers=auth(manager))
        assert response.status_code == 200
        assert response.json()["name"] == "Acme Corp"

    async def test_update_rejects_null_name(self, client, manager, org) -> None:
        response = await client.patch(f"/organizations/{org.id}", json={"name": None}, headers=auth(manager))
        assert response.status_code == 400
        assert "name" in response.json()

    async def test_delete_clears_active_organization(self, client, admin, manager, org, db) -> None:
        manager_id = manager.id
        response = await client.delete(f"/organizations/{org.id}", headers=auth(admin))
        assert response.status_code == 204

        db.expire_all()
        result = await db.execute(select(User).where(User.id == manager_id))
        assert result.scalar_one().active_organization_id is None

    async def test_switch(self, client, make_user, add_member, make_org, org) -> None:
        member = await make_user("member")
        await add_member(org, member)
        other = await make_org("other")

        response = await client.post("/organizations/switch", json={"organizationId": org.id}, headers=auth(member))
        assert response.status_code == 200
        assert response.json() == {"activeOrganizationId": org.id, "activeOrganizationName": org.name}

        response = await client.post("/organizations/switch", json={"organizationId": other.id}, headers=auth(member))
        assert response.status_code == 403

    async def test_admin_switches_anywhere(self, client, admin, org) -> None:
        response = await client.post("/organizations/switch", json={"organizationId": org.id}, headers=auth(admin))
        assert response.status_code == 200


class TestMembers:
    """Membership changes under hierarchy and last-admin rules."""

    async def test_manager_adds_member(self, client, manager, make_user, org) -> None:
        user = await make_user("member")
        response = await client.post(
            f"/organizations/{org.id}/members",
            json={"userId": user.id, "role": "member"},
            headers=auth(manager),
        )
        assert response.status_code == 201
        assert response.json()["user"]["id"] == user.id

        again = await client.post(
            f"/organizations/{org.id}/members",
            json={"userId": user.id, "role": "member"},
            headers=auth(manager),
        )
        assert again.status_code == 409

    async def test_manager_cannot_grant_admin(self, client, manager, make_user, org) -> None:
        user = await make_user("member")
        response = await client.post(
            f"/organizations/{org.id}/members",
            json={"userId": user.id, "role": "admin"},
            headers=auth(manager),
        )
        assert response.status_code == 403
        assert response.json() == DENIED

    async def test_list_members(self, client, manager, org) -> None:
        response = await client.get(f"/organizations/{org.id}/members", headers=auth(manager))
        assert response.status_code == 200
        assert [item["userId"] for item in response.json()] == [manager.id]

    async def test_manager_changes_member_role(self, client, manager, make_user, add_member, org) -> None:
        user = await make_user("member")
        member = await add_member(org, user)

        response = await client.put(
            f"/organizations/{org.id}/members/{member.id}/role", json={"role": "manager"}, headers=auth(manager)
        )
        assert response.status_code == 200
        assert response.json()["role"] == "manager"

    async def test_manager_cannot_touch_peer(self, client, manager, make_user, add_member, org) -> None:
        peer = await make_user("manager")
        member = await add_member(org, peer, "manager")

        response = await client.delete(f"/organizations/{org.id}/members/{member.id}", headers=auth(manager))
        assert response.status_code == 403

    async def test_manager_cannot_remove_platform_admin(self, client, manager, make_user, add_member, org) -> None:
        platform_admin = await make_user("admin")
        membership = await add_member(org, platform_admin, "member")

        capabilities = await client.get(f"/admin/users/{platform_admin.id}/capabilities", headers=auth(manager))
        assert not any(capabilities.json()["actions"].values())

        response = await client.delete(f"/organizations/{org.id}/members/{membership.id}", headers=auth(manager))
        assert response.status_code == 403
        assert response.json() == DENIED

    async def test_manager_cannot_change_fellow_manager(self, client, manager, make_user, add_member, org) -> None:
        peer = await make_user("manager")
        membership = await add_member(org, peer, "member")

        response = await client.put(
            f"/organizations/{org.id}/members/{membership.id}/role", json={"role": "manager"}, headers=auth(manager)
        )
        assert response.status_code == 403
        assert response.json() == DENIED

        members = await client.get(f"/organizations/{org.id}/members", headers=auth(manager))
        roles = {item["userId"]: item["role"] for item in members.json()}
        assert roles[peer.id] == "member"

    async def test_admin_changes_membership_of_platform_manager(self, client, admin, make_user, add_member, org) -> None:
        peer = await make_user("manager")
        membership = await add_member(org, peer, "member")

        response = await client.put(
            f"/organizations/{org.id}/members/{membership.id}/role", json={"role": "manager"}, headers=auth(admin)
        )
        assert response.status_code == 200

    async def test_cannot_change_own_membership(self, client, manager, org, db) -> None:
        result = await db.execute(select(OrganizationMember).where(OrganizationMember.user_id == manager.id))
        own = result.scalar_one()

        response = await client.delete(f"/organizations/{org.id}/members/{own.id}", headers=auth(manager))
        assert response.status_code == 403

    async def test_remove_member(self, client, admin, make_user, add_member, activate, org, db) -> None:
        user = await make_user("member")
        member = await add_member(org, user)
        await activate(user, org)

        response = await client.delete(f"/organizations/{org.id}/members/{member.id}", headers=auth(admin))
        assert response.status_code == 204

        user_id = user.id
        db.expire_all()
        result = await db.execute(select(User).where(User.id == user_id))
        assert result.scalar_one().active_organization_id is None

    async def test_last_admin_cannot_be_removed(self, client, admin, make_user, add_member, org) -> None:
        owner = await make_user("member")
        membership = await add_member(org, owner, "admin")

        response = await client.delete(f"/organizations/{org.id}/members/{membership.id}", headers=auth(admin))
        assert response.status_code == 403
        assert response.json() == DENIED

        demote = await client.put(
            f"/organizations/{org.id}/members/{membership.id}/role", json={"role": "member"}, headers=auth(admin)
        )
        assert demote.status_code == 403

    async def test_admin_removed_when_another_remains(self, client, admin, make_user, add_member, org) -> None:
        first, second = await make_user("member"), await make_user("member")
        membership = await add_member(org, first, "admin")
        await add_member(org, second, "admin")

        response = await client.delete(f"/organizations/{org.id}/members/{membership.id}", headers=auth(admin))
        assert response.status_code == 204

    async def test_unknown_member(self, client, admin, org) -> None:
        response = await client.delete(f"/organizations/{org.id}/members/missing", headers=auth(admin))
        assert response.status_code == 404


class TestInvitations:
    """Invite, accept and cancel."""

    async def invite(self, client, actor, org, email: str, role: str = "member"):
        return await client.post(
            f"/organizations/{org.id}/invitations", json={"email": email, "role": role}, headers=auth(actor)
        )

    async def test_invite_and_accept(self, client, manager, make_user, org) -> None:
        invitee = await make_user("member", name="invitee")
        response = await self.invite(client, manager, org, "Invitee@Example.com")
        assert response.status_code == 201
        invitation = response.json()
        assert invitation["status"] == "pending"
        assert invitation["email"] == "invitee@example.com"

        duplicate = await self.invite(client, manager, org, "invitee@example.com")
        assert duplicate.status_code == 409

        accepted = await client.post(f"/organizations/invitations/{invitation['id']}/accept", headers=auth(invitee))
        assert accepted.status_code == 200
        assert accepted.json()["organizationId"] == org.id

        session = await client.get("/admin/users/me/session", headers=auth(invitee))
        assert session.json()["activeOrganizationId"] == org.id

        again = await client.post(f"/organizations/invitations/{invitation['id']}/accept", headers=auth(invitee))
        assert again.status_code == 400

    async def test_accept_wrong_email(self, client, manager, make_user, org) -> None:
        stranger = await make_user("member", name="stranger")
        invitation = (await self.invite(client, manager, org, "someone@example.com")).json()

        response = await client.post(f"/organizations/invitations/{invitation['id']}/accept", headers=auth(stranger))
        assert response.status_code == 403

    async def test_accept_expired(self, client, manager, make_user, org, db) -> None:
        invitee = await make_user("member", name="late")
        invitation = (await self.invite(client, manager, org, "late@example.com")).json()
        await db.execute(
            update(OrganizationInvitation)
            .where(OrganizationInvitation.id == invitation["id"])
            .values(expires_at=utcnow() - timedelta(days=1))
        )
        await db.commit()

        response = await client.post(f"/organizations/invitations/{invitation['id']}/accept", headers=auth(invitee))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invitation has expired"

    async def test_cancel(self, client, manager, make_user, org) -> None:
        invitee = await make_user("member", name="canceled")
        invitation = (await self.invite(client, manager, org, "canceled@example.com")).json()

        response = await client.delete(f"/organizations/{org.id}/invitations/{invitation['id']}", headers=auth(manager))
        assert response.status_code == 200
        assert response.json()["status"] == "canceled"

        accept = await client.post(f"/organizations/invitations/{invitation['id']}/accept", headers=auth(invitee))
        assert accept.status_code == 400

        listed = await client.get(f"/organizations/{org.id}/invitations", headers=auth(manager))
        assert [item["status"] for item in listed.json()] == ["canceled"]

    async def test_manager_cannot_invite_admin(self, client, manager, org) -> None:
        response = await self.invite(client, manager, org, "boss@example.com", role="admin")
        assert response.status_code == 403

    async def test_member_cannot_invite(self, client, make_user, add_member, activate, org) -> None:
        member = await make_user("member")
        await add_member(org, member)
        await activate(member, org)

        response = await self.invite(client, member, org, "friend@example.com")
        assert response.status_code == 403

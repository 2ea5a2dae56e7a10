"""Tests for the role hierarchy policy."""
import pytest

from app.features.rbac.hierarchy import (
    assignable_roles,
    can_assign_role,
    can_manage_membership,
    outranks,
    rank_of,
    visible_roles,
)


class TestRank:
    """Tests for rank_of and outranks."""

    def test_rank_values(self) -> None:
        assert rank_of("admin") == 2
        assert rank_of("manager") == 1
        assert rank_of("member") == 0

    def test_unknown_role_ranks_lowest(self) -> None:
        assert rank_of("auditor") == 0

    @pytest.mark.parametrize("role", ["admin", "manager", "member"])
    def test_ties_never_outrank(self, role: str) -> None:
        assert not outranks(role, role)

    def test_strict_order(self) -> None:
        assert outranks("admin", "manager")
        assert outranks("admin", "member")
        assert outranks("manager", "member")
        assert not outranks("manager", "admin")
        assert not outranks("member", "manager")


class TestAssignability:
    """Tests for can_assign_role."""

    def test_manager_cannot_assign_admin(self) -> None:
        assert can_assign_role("manager", "admin") is False

    def test_admin_can_assign_admin(self) -> None:
        assert can_assign_role("admin", "admin") is True

    @pytest.mark.parametrize("target", ["manager", "member"])
    def test_manager_assigns_manager_and_member(self, target: str) -> None:
        assert can_assign_role("manager", target)

    @pytest.mark.parametrize("target", ["admin", "manager", "member"])
    def test_member_assigns_nothing(self, target: str) -> None:
        assert not can_assign_role("member", target)

    def test_unknown_roles_fail_closed(self) -> None:
        assert not can_assign_role("owner", "member")
        assert not can_assign_role("admin", "owner")

    def test_assignable_roles_ordered_high_to_low(self) -> None:
        assert assignable_roles("admin") == ["admin", "manager", "member"]
        assert assignable_roles("manager") == ["manager", "member"]
        assert assignable_roles("member") == []


class TestVisibility:
    """Tests for visible_roles and can_manage_membership."""

    ROLES = ["admin", "manager", "member", "auditor"]

    def test_admin_sees_every_role(self) -> None:
        assert visible_roles("admin", self.ROLES) == self.ROLES

    def test_manager_sees_lower_roles_only(self) -> None:
        assert visible_roles("manager", self.ROLES) == ["member", "auditor"]

    def test_member_sees_nothing(self) -> None:
        assert visible_roles("member", self.ROLES) == []

    def test_admin_manages_every_membership(self) -> None:
        assert can_manage_membership("admin", "admin", "member")
        assert can_manage_membership("admin", "manager", "admin")

    def test_manager_manages_members_only(self) -> None:
        assert can_manage_membership("manager", "member", "member")
        assert not can_manage_membership("manager", "manager", "member")
        assert not can_manage_membership("manager", "admin", "member")

    def test_manager_checks_holder_platform_role(self) -> None:
        assert not can_manage_membership("manager", "member", "admin")
        assert not can_manage_membership("manager", "member", "manager")

    def test_manager_rejects_unknown_holder(self) -> None:
        assert not can_manage_membership("manager", "member", None)

    def test_member_manages_nothing(self) -> None:
        assert not can_manage_membership("member", "member", "member")

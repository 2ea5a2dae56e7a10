"""
Organization models.

Users belong to organizations through OrganizationMember rows, each carrying
an organization role (admin, manager, member). A manager's admin scope is the
organization stored as their active organization.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, Enum as SQLEnum, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """
    Organization model.

    `slug` is unique and used in URLs; availability can be checked before
    creation.
    """
    __tablename__ = "organizations"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Organization identifiers
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    # Optional organization details
    logo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Organization settings
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    members: Mapped[list["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    invitations: Mapped[list["OrganizationInvitation"]] = relationship(
        "OrganizationInvitation",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, slug={self.slug})>"


class OrganizationMember(Base, TimestampMixin):
    """
    Membership of a user in an organization.

    One row per (organization, user). The last admin-role row of an
    organization can never be removed or demoted.
    """
    __tablename__ = "organization_members"
    __table_args__ = (UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Foreign keys
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member", index=True)

    # Relationships
    organization: Mapped["Organization"] = relationship("Organization", back_populates="members", lazy="selectin")
    user: Mapped["User"] = relationship("User", back_populates="memberships", lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return f"<OrganizationMember(id={self.id}, org_id={self.organization_id}, user_id={self.user_id}, role={self.role})>"


class InvitationStatus(str, enum.Enum):
    """Status of organization invitations."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELED = "canceled"


class OrganizationInvitation(Base, TimestampMixin):
    """
    Invitation for an email address to join an organization with a role.

    Invitations expire after INVITATION_EXPIRY_DAYS and can be canceled by
    anyone allowed to invite into the organization.
    """
    __tablename__ = "organization_invitations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Foreign keys
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    inviter_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Invitation details
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")
    status: Mapped[InvitationStatus] = mapped_column(
        SQLEnum(InvitationStatus),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    organization: Mapped["Organization"] = relationship("Organization", back_populates="invitations", lazy="selectin")

    def __repr__(self) -> str:
        return f"<OrganizationInvitation(id={self.id}, org_id={self.organization_id}, email={self.email!r}, status={self.status})>"

"""
User and impersonation models with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    User model representing authenticated users.

    `role` is the platform role (admin, manager, member). Organization roles
    live on OrganizationMember rows. `active_organization_id` is the session's
    active organization and only changes through the explicit switch endpoint.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Appwrite user ID (for linking with Appwrite authentication)
    appwrite_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Platform role
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="member", index=True)

    # Ban state
    banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ban_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    ban_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Current active organization
    active_organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Relationships
    memberships: Mapped[list["OrganizationMember"]] = relationship(  # type: ignore
        "OrganizationMember",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"


class Impersonation(Base, TimestampMixin):
    """
    Record of one identity swap.

    Keyed by the identity-provider session id of the impersonator. While
    `ended_at` is null every request on that session acts as
    `impersonated_user_id`; stopping sets `ended_at` and restores the original.
    """
    __tablename__ = "impersonations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    original_user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    impersonated_user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    original_user: Mapped["User"] = relationship("User", foreign_keys=[original_user_id], lazy="selectin")
    impersonated_user: Mapped["User"] = relationship("User", foreign_keys=[impersonated_user_id], lazy="selectin")

    def __repr__(self) -> str:
        return (
            f"<Impersonation(id={self.id}, original={self.original_user_id}, "
            f"impersonated={self.impersonated_user_id}, active={self.ended_at is None})>"
        )

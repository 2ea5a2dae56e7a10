"""
Organization-related lookup helpers.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Organization, OrganizationInvitation, OrganizationMember


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.

    Args:
        organization_id: Organization ULID
        db: Database session

    Returns:
        Organization model

    Raises:
        HTTPException: 404 if organization not found
    """
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    organization = result.scalar_one_or_none()

    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )

    return organization


async def get_member_by_id(
    db: AsyncSession,
    organization_id: str,
    member_id: str
) -> OrganizationMember:
    """
    Get a membership row of an organization or raise 404.

    Raises:
        HTTPException: 404 if the membership does not belong to the organization
    """
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.id == member_id,
            OrganizationMember.organization_id == organization_id,
        )
    )
    member = result.scalar_one_or_none()

    if member is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Member not found"
        )

    return member


async def get_membership(
    db: AsyncSession,
    organization_id: str,
    user_id: str
) -> OrganizationMember | None:
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_invitation_by_id(
    db: AsyncSession,
    invitation_id: str
) -> OrganizationInvitation:
    """
    Get invitation by ID or raise 404.

    Raises:
        HTTPException: 404 if invitation not found
    """
    result = await db.execute(
        select(OrganizationInvitation).where(OrganizationInvitation.id == invitation_id)
    )
    invitation = result.scalar_one_or_none()

    if invitation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )

    return invitation

"""
Organization feature routes.

Organization-level operations are gated by base permission plus organization
scope (admins: any organization, managers: their active organization only).
Membership changes additionally respect the role hierarchy and the last-admin
guard.
"""
from datetime import timedelta
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.organizations.dependencies import (
    get_invitation_by_id,
    get_member_by_id,
    get_membership,
    get_organization_by_id,
)
from app.features.organizations.models import (
    InvitationStatus,
    Organization,
    OrganizationInvitation,
    OrganizationMember,
)
from app.features.organizations.schemas import (
    AddMemberRequest,
    InvitationCreate,
    InvitationResponse,
    MemberResponse,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationUpdate,
    SlugCheckResponse,
    SwitchOrganizationRequest,
    SwitchOrganizationResponse,
    UpdateMemberRoleRequest,
)
from app.features.rbac.dependencies import CurrentActor, CurrentSession, CurrentTable, audit
from app.features.rbac.enforcement import (
    authorize_membership_change,
    authorize_organization,
    ensure_not_last_admin,
    get_user_or_404,
    require_permission_for,
)
from app.features.rbac.hierarchy import ROLE_ADMIN
from app.features.rbac.scope import require_active_organization
from app.features.users.models import User
from app.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)
router = APIRouter()

Db = Annotated[AsyncSession, Depends(get_db)]


def _organization_response(organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    response.member_count = len(organization.members)
    return response


async def _slug_taken(db: AsyncSession, slug: str, exclude_id: str | None = None) -> bool:
    stmt = select(func.count()).select_from(Organization).where(Organization.slug == slug)
    if exclude_id:
        stmt = stmt.where(Organization.id != exclude_id)
    result = await db.execute(stmt)
    return (result.scalar() or 0) > 0


async def _clear_active_organization(db: AsyncSession, organization_id: str, user_id: str | None = None) -> None:
    """Unset the active organization of users who lost access to it."""
    stmt = update(User).where(User.active_organization_id == organization_id)
    if user_id:
        stmt = stmt.where(User.id == user_id)
    await db.execute(stmt.values(active_organization_id=None))


# ============================================================================
# Organization CRUD
# ============================================================================

@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Create a new organization; the creator becomes its first admin member."""
    require_permission_for(actor, table, "organization:create")

    if await _slug_taken(db, org_data.slug):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )

    new_org = Organization(**org_data.model_dump())
    db.add(new_org)
    await db.flush()

    db.add(OrganizationMember(organization_id=new_org.id, user_id=actor.id, role=ROLE_ADMIN))
    await audit(db, request, session, "create", "organization", new_org.id, new_org.id, details={"slug": new_org.slug})
    await db.commit()

    # Refresh to get updated relationships
    await db.refresh(new_org)
    return _organization_response(new_org)


@router.get("/", response_model=list[OrganizationResponse])
async def list_organizations(
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
    skip: int = 0,
    limit: int = 50,
):
    """List organizations: all for admins, the active one for managers."""
    require_permission_for(actor, table, "organization:read")

    query = select(Organization).order_by(Organization.name)
    if actor.role != ROLE_ADMIN:
        query = query.where(Organization.id == require_active_organization(actor))

    result = await db.execute(query.offset(skip).limit(limit))
    return [_organization_response(org) for org in result.scalars().all()]


@router.get("/check-slug", response_model=SlugCheckResponse)
async def check_slug(slug: str, actor: CurrentActor, db: Db):
    """Check whether a slug is still available."""
    return SlugCheckResponse(slug=slug, available=not await _slug_taken(db, slug))


@router.post("/switch", response_model=SwitchOrganizationResponse)
async def switch_organization(
    switch_data: SwitchOrganizationRequest,
    session: CurrentSession,
    db: Db,
):
    """Switch the session's active organization."""
    user = session.user
    organization = await get_organization_by_id(switch_data.organization_id, db)

    if user.role != ROLE_ADMIN and await get_membership(db, organization.id, user.id) is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )

    user.active_organization_id = organization.id
    await db.commit()
    log.info(f"User {user.id} switched active organization to {organization.id}")

    return SwitchOrganizationResponse(
        active_organization_id=organization.id,
        active_organization_name=organization.name,
    )


@router.post("/invitations/{invitation_id}/accept", response_model=MemberResponse)
async def accept_invitation(
    invitation_id: str,
    request: Request,
    session: CurrentSession,
    db: Db,
):
    """Accept a pending invitation addressed to the current user."""
    user = session.user
    invitation = await get_invitation_by_id(db, invitation_id)

    if invitation.email.lower() != user.email.lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This invitation is for a different user"
        )
    if invitation.status != InvitationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invitation is {invitation.status.value}"
        )
    if as_utc(invitation.expires_at) <= utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invitation has expired"
        )
    if await get_membership(db, invitation.organization_id, user.id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Already a member of this organization"
        )

    member = OrganizationMember(organization_id=invitation.organization_id, user_id=user.id, role=invitation.role)
    db.add(member)
    invitation.status = InvitationStatus.ACCEPTED
    if user.active_organization_id is None:
        user.active_organization_id = invitation.organization_id

    await audit(
        db, request, session, "accept-invitation", "organization", invitation.organization_id,
        invitation.organization_id, details={"invitationId": invitation.id, "role": invitation.role},
    )
    await db.commit()
    await db.refresh(member)
    return member


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(organization_id: str, actor: CurrentActor, table: CurrentTable, db: Db):
    """Get organization by ID."""
    authorize_organization(actor, organization_id, table, "organization:read")
    return _organization_response(await get_organization_by_id(organization_id, db))


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    update_data: OrganizationUpdate,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Update organization information."""
    authorize_organization(actor, organization_id, table, "organization:update")
    organization = await get_organization_by_id(organization_id, db)

    update_dict = update_data.model_dump(exclude_unset=True)
    if update_dict.get("slug") and await _slug_taken(db, update_dict["slug"], exclude_id=organization.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization with this slug already exists"
        )

    for field, value in update_dict.items():
        setattr(organization, field, value)

    await audit(db, request, session, "update", "organization", organization.id, organization.id, details=update_dict)
    await db.commit()
    await db.refresh(organization)
    return _organization_response(organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Delete an organization with its memberships and invitations."""
    authorize_organization(actor, organization_id, table, "organization:delete")
    organization = await get_organization_by_id(organization_id, db)

    await _clear_active_organization(db, organization.id)
    await db.delete(organization)
    await audit(db, request, session, "delete", "organization", organization_id, details={"slug": organization.slug})
    await db.commit()


# ============================================================================
# Members
# ============================================================================

@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(organization_id: str, actor: CurrentActor, table: CurrentTable, db: Db):
    """List the members of an organization."""
    authorize_organization(actor, organization_id, table, "organization:read")
    await get_organization_by_id(organization_id, db)

    result = await db.execute(
        select(OrganizationMember)
        .where(OrganizationMember.organization_id == organization_id)
        .order_by(OrganizationMember.created_at, OrganizationMember.id)
    )
    return result.scalars().all()


@router.post("/{organization_id}/members", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    organization_id: str,
    add_data: AddMemberRequest,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Add an existing user to an organization with a role."""
    authorize_organization(actor, organization_id, table, "organization:invite", new_role=add_data.role)
    await get_organization_by_id(organization_id, db)
    user = await get_user_or_404(db, add_data.user_id)

    if await get_membership(db, organization_id, user.id) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this organization"
        )

    member = OrganizationMember(organization_id=organization_id, user_id=user.id, role=add_data.role)
    db.add(member)
    await audit(
        db, request, session, "add-member", "organization", organization_id, organization_id,
        details={"userId": user.id, "role": add_data.role},
    )
    await db.commit()
    await db.refresh(member)
    return member


@router.put("/{organization_id}/members/{member_id}/role", response_model=MemberResponse)
async def update_member_role(
    organization_id: str,
    member_id: str,
    body: UpdateMemberRoleRequest,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Change a member's organization role."""
    authorize_organization(actor, organization_id, table, "organization:update")
    member = await get_member_by_id(db, organization_id, member_id)
    authorize_membership_change(
        actor, organization_id, member, table, permission="organization:update", new_role=body.role
    )

    if member.role == ROLE_ADMIN and body.role != ROLE_ADMIN:
        await ensure_not_last_admin(db, member.user_id, [organization_id])

    previous = member.role
    member.role = body.role
    await audit(
        db, request, session, "set-member-role", "organization", organization_id, organization_id,
        details={"memberId": member.id, "userId": member.user_id, "from": previous, "to": body.role},
    )
    await db.commit()
    await db.refresh(member)
    return member


@router.delete("/{organization_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    member_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Remove a member from an organization."""
    authorize_organization(actor, organization_id, table, "organization:update")
    member = await get_member_by_id(db, organization_id, member_id)
    authorize_membership_change(actor, organization_id, member, table, permission="organization:update")
    await ensure_not_last_admin(db, member.user_id, [organization_id])

    user_id = member.user_id
    await db.delete(member)
    await _clear_active_organization(db, organization_id, user_id)
    await audit(
        db, request, session, "remove-member", "organization", organization_id, organization_id,
        details={"memberId": member_id, "userId": user_id},
    )
    await db.commit()


# ============================================================================
# Invitations
# ============================================================================

@router.get("/{organization_id}/invitations", response_model=list[InvitationResponse])
async def list_invitations(organization_id: str, actor: CurrentActor, table: CurrentTable, db: Db):
    """List the invitations of an organization."""
    authorize_organization(actor, organization_id, table, "organization:invite")
    await get_organization_by_id(organization_id, db)

    result = await db.execute(
        select(OrganizationInvitation)
        .where(OrganizationInvitation.organization_id == organization_id)
        .order_by(OrganizationInvitation.created_at.desc(), OrganizationInvitation.id)
    )
    return result.scalars().all()


@router.post("/{organization_id}/invitations", response_model=InvitationResponse, status_code=status.HTTP_201_CREATED)
async def create_invitation(
    organization_id: str,
    invitation_data: InvitationCreate,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Invite an email address to join an organization with a role."""
    authorize_organization(actor, organization_id, table, "organization:invite", new_role=invitation_data.role)
    await get_organization_by_id(organization_id, db)

    email = invitation_data.email.lower()
    result = await db.execute(
        select(OrganizationInvitation).where(
            OrganizationInvitation.organization_id == organization_id,
            func.lower(OrganizationInvitation.email) == email,
            OrganizationInvitation.status == InvitationStatus.PENDING,
        )
    )
    pending = [inv for inv in result.scalars().all() if as_utc(inv.expires_at) > utcnow()]
    if pending:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A pending invitation already exists for this email"
        )

    invitation = OrganizationInvitation(
        organization_id=organization_id,
        inviter_id=actor.id,
        email=email,
        role=invitation_data.role,
        expires_at=utcnow() + timedelta(days=config.INVITATION_EXPIRY_DAYS),
    )
    db.add(invitation)
    await db.flush()
    await audit(
        db, request, session, "invite", "organization", organization_id, organization_id,
        details={"invitationId": invitation.id, "email": email, "role": invitation_data.role},
    )
    await db.commit()
    await db.refresh(invitation)
    return invitation


@router.delete("/{organization_id}/invitations/{invitation_id}", response_model=InvitationResponse)
async def cancel_invitation(
    organization_id: str,
    invitation_id: str,
    request: Request,
    session: CurrentSession,
    actor: CurrentActor,
    table: CurrentTable,
    db: Db,
):
    """Cancel a pending invitation."""
    authorize_organization(actor, organization_id, table, "organization:invite")
    invitation = await get_invitation_by_id(db, invitation_id)
    if invitation.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invitation not found"
        )
    if invitation.status != InvitationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invitation is {invitation.status.value}"
        )

    invitation.status = InvitationStatus.CANCELED
    await audit(
        db, request, session, "cancel-invitation", "organization", organization_id, organization_id,
        details={"invitationId": invitation.id},
    )
    await db.commit()
    await db.refresh(invitation)
    return invitation

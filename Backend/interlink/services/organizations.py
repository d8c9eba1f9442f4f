import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from interlink.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from interlink.db.models import MemberRole, Organization, OrganizationInvite, OrganizationMember
from interlink.services.auth import SessionContext, normalize_email

logger = logging.getLogger(__name__)

INVITABLE_ROLES = (MemberRole.ADMIN, MemberRole.MEMBER)
MANAGER_ROLES = (MemberRole.OWNER.value, MemberRole.ADMIN.value)


def _membership(db: Session, org_id: str, user_id: str) -> Optional[OrganizationMember]:
    return db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == org_id,
            OrganizationMember.user_id == user_id,
        )
    ).scalar_one_or_none()


def _require_manager(db: Session, org_id: str, ctx: SessionContext) -> OrganizationMember:
    member = _membership(db, org_id, ctx.user_id)
    if member is None:
        raise NotFoundError(f"Organization {org_id} not found")
    if member.role not in MANAGER_ROLES:
        raise PermissionDeniedError("Only owners and admins can manage members")
    return member


def create_organization(db: Session, ctx: SessionContext, name: str) -> Organization:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Organization name is required")
    org = Organization(name=name, owner_id=ctx.user_id)
    db.add(org)
    db.flush()
    db.add(OrganizationMember(organization_id=org.id, user_id=ctx.user_id, role=MemberRole.OWNER.value))
    db.commit()
    db.refresh(org)
    logger.info(f"Organization {org.id} created by user {ctx.user_id}")
    return org


def invite_member(
    db: Session, ctx: SessionContext, org_id: str, email: str, role: MemberRole = MemberRole.MEMBER
) -> OrganizationInvite:
    _require_manager(db, org_id, ctx)
    if role not in INVITABLE_ROLES:
        raise ValidationError(f"Role must be one of {', '.join(r.value for r in INVITABLE_ROLES)}")
    email = normalize_email(email)

    members = db.execute(
        select(OrganizationMember).where(OrganizationMember.organization_id == org_id)
    ).scalars()
    if any(m.user.email == email for m in members):
        raise ValidationError(f"{email} is already a member")

    existing = db.execute(
        select(OrganizationInvite).where(
            OrganizationInvite.organization_id == org_id,
            OrganizationInvite.email == email,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ValidationError(f"{email} already has a pending invite")

    invite = OrganizationInvite(organization_id=org_id, email=email, role=role.value, invited_by=ctx.user_id)
    db.add(invite)
    db.commit()
    db.refresh(invite)
    logger.info(f"Invite {invite.id} sent to {email} for organization {org_id} as {role.value}")
    return invite


def accept_invite(db: Session, ctx: SessionContext, invite_id: str) -> OrganizationMember:
    invite = db.get(OrganizationInvite, invite_id)
    if invite is None or invite.email != ctx.email.lower():
        raise NotFoundError(f"Invite {invite_id} not found")
    if _membership(db, invite.organization_id, ctx.user_id) is not None:
        raise ValidationError("Already a member of this organization")

    member = OrganizationMember(organization_id=invite.organization_id, user_id=ctx.user_id, role=invite.role)
    db.add(member)
    db.delete(invite)
    db.commit()
    db.refresh(member)
    logger.info(f"User {ctx.user_id} joined organization {member.organization_id} as {member.role}")
    return member


def revoke_invite(db: Session, ctx: SessionContext, invite_id: str) -> None:
    invite = db.get(OrganizationInvite, invite_id)
    if invite is None:
        raise NotFoundError(f"Invite {invite_id} not found")
    _require_manager(db, invite.organization_id, ctx)
    db.delete(invite)
    db.commit()
    logger.info(f"Invite {invite_id} revoked by user {ctx.user_id}")


def remove_member(db: Session, ctx: SessionContext, member_id: str) -> None:
    member = db.get(OrganizationMember, member_id)
    if member is None:
        raise NotFoundError(f"Member {member_id} not found")
    _require_manager(db, member.organization_id, ctx)
    if member.role == MemberRole.OWNER.value:
        raise PermissionDeniedError("The organization owner cannot be removed")
    db.delete(member)
    db.commit()
    logger.info(f"Member {member_id} removed from organization {member.organization_id}")


def my_organization(db: Session, ctx: SessionContext) -> Optional[Dict[str, Any]]:
    """First organization the caller belongs to, with members and pending invites."""
    membership = db.execute(
        select(OrganizationMember)
        .where(OrganizationMember.user_id == ctx.user_id)
        .order_by(OrganizationMember.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if membership is None:
        return None

    org = db.get(Organization, membership.organization_id)
    members: List[OrganizationMember] = list(
        db.execute(
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == org.id)
            .order_by(OrganizationMember.created_at.asc())
        ).scalars()
    )
    invites: List[OrganizationInvite] = list(
        db.execute(
            select(OrganizationInvite)
            .where(OrganizationInvite.organization_id == org.id)
            .order_by(OrganizationInvite.created_at.desc())
        ).scalars()
    )
    return {
        "organization": {"id": org.id, "name": org.name, "owner_id": org.owner_id},
        "role": membership.role,
        "members": [
            {"id": m.id, "user_id": m.user_id, "email": m.user.email, "role": m.role}
            for m in members
        ],
        "invites": [
            {"id": i.id, "email": i.email, "role": i.role, "created_at": i.created_at.isoformat() + "Z"}
            for i in invites
        ],
    }

"""
Organization Routes: team membership and invites.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from interlink.api.deps import get_session_context
from interlink.api.schemas import InviteCreate, OrganizationCreate
from interlink.core.limiter import CREATE_LIMIT, STATUS_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services import organizations
from interlink.services.auth import SessionContext

router = APIRouter()


@router.post("/organizations", status_code=201)
@limiter.limit(CREATE_LIMIT)
def create_organization(
    request: Request,
    body: OrganizationCreate,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    org = organizations.create_organization(db, ctx, body.name)
    return {"id": org.id, "name": org.name, "owner_id": org.owner_id}


@router.get("/organizations/mine")
@limiter.limit(STATUS_LIMIT)
def my_organization(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return {"organization": organizations.my_organization(db, ctx)}


@router.post("/organizations/{org_id}/invites", status_code=201)
@limiter.limit(CREATE_LIMIT)
def invite_member(
    request: Request,
    org_id: str,
    body: InviteCreate,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    invite = organizations.invite_member(db, ctx, org_id, body.email, body.role)
    return {"id": invite.id, "email": invite.email, "role": invite.role}


@router.post("/invites/{invite_id}/accept")
@limiter.limit(CREATE_LIMIT)
def accept_invite(
    request: Request,
    invite_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    member = organizations.accept_invite(db, ctx, invite_id)
    return {"id": member.id, "organization_id": member.organization_id, "role": member.role}


@router.delete("/invites/{invite_id}")
@limiter.limit(CREATE_LIMIT)
def revoke_invite(
    request: Request,
    invite_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    organizations.revoke_invite(db, ctx, invite_id)
    return {"message": "Invite revoked"}


@router.delete("/organizations/members/{member_id}")
@limiter.limit(CREATE_LIMIT)
def remove_member(
    request: Request,
    member_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    organizations.remove_member(db, ctx, member_id)
    return {"message": "Member removed"}

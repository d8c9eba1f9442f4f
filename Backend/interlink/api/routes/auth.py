"""
Auth Routes: password sign-in (registering unknown emails) and sign-out.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from interlink.api.deps import get_session_context
from interlink.api.schemas import SignInRequest, SignInResponse
from interlink.core.limiter import AUTH_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services import auth
from interlink.services.auth import SessionContext

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/auth/sign-in", response_model=SignInResponse)
@limiter.limit(AUTH_LIMIT)
def sign_in(request: Request, body: SignInRequest, db: Session = Depends(get_db)):
    result = auth.sign_in(db, body.email, body.password)
    return SignInResponse(token=result.token, user_id=result.user_id, expires_at=result.expires_at)


@router.post("/auth/sign-out")
@limiter.limit(AUTH_LIMIT)
def sign_out(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    auth.sign_out(db, ctx)
    return {"message": "Signed out"}

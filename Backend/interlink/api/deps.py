import hmac
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import AuthenticationError
from interlink.db.base import get_db
from interlink.services.auth import SessionContext, resolve_session

INTERNAL_SECRET_HEADER = "x-internal-secret"


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_session_context(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> SessionContext:
    return resolve_session(db, bearer_token(authorization))


def require_internal_secret(
    x_internal_secret: Optional[str] = Header(default=None, alias=INTERNAL_SECRET_HEADER),
) -> None:
    """Guard for engine/scheduler endpoints. Disabled when INTERNAL_API_SECRET is empty."""
    expected = settings.INTERNAL_API_SECRET
    if not expected:
        return
    if not x_internal_secret or not hmac.compare_digest(x_internal_secret, expected):
        raise AuthenticationError("Invalid internal secret")

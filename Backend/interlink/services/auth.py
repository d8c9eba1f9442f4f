"""
Passwords and session tokens.

Passwords are stored as bcrypt hashes. A token is an HS256 JWT whose `sid`
claim names a row in the sessions table. The row is the source of truth:
signing out revokes it, and a revoked or expired row invalidates the token
even if the signature is still good.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import AuthenticationError, ValidationError
from interlink.db.base import utcnow
from interlink.db.models import AuthSession, User

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class SessionContext:
    """Explicit caller identity handed to every authenticated handler."""
    user_id: str
    email: str
    session_id: str


@dataclass
class SignInResult:
    token: str
    user_id: str
    session_id: str
    expires_at: datetime


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("A valid email address is required")
    return email


def hash_password(password: str) -> str:
    """Bcrypt hash with a fresh salt, at the configured work factor."""
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def _check_password(password: str) -> str:
    password = password or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    # bcrypt only looks at the first 72 bytes
    if len(password.encode("utf-8")) > 72:
        raise ValidationError("Password must be at most 72 bytes")
    return password


def authenticate_user(db: Session, email: str, password: str) -> User:
    """
    Existing accounts must present their password. An unknown email is
    registered with the given password when ALLOW_SIGN_UP is on.
    """
    email = normalize_email(email)
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if user is None:
        if not settings.ALLOW_SIGN_UP:
            raise AuthenticationError("Invalid email or password")
        user = User(email=email, password_hash=hash_password(_check_password(password)))
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} registered for {email}")
        return user
    if not verify_password(password or "", user.password_hash):
        logger.warning(f"Failed sign-in for user {user.id}")
        raise AuthenticationError("Invalid email or password")
    return user


def _encode(session: AuthSession, email: str) -> str:
    claims = {
        "sub": session.user_id,
        "sid": session.id,
        "email": email,
        "iat": int(session.created_at.replace(tzinfo=timezone.utc).timestamp()),
        "exp": int(session.expires_at.replace(tzinfo=timezone.utc).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def sign_in(db: Session, email: str, password: str, ttl_minutes: Optional[int] = None) -> SignInResult:
    user = authenticate_user(db, email, password)
    now = utcnow()
    ttl = settings.SESSION_TTL_MINUTES if ttl_minutes is None else ttl_minutes
    session = AuthSession(user_id=user.id, created_at=now, expires_at=now + timedelta(minutes=ttl))
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info(f"Session {session.id} opened for user {user.id}")
    return SignInResult(
        token=_encode(session, user.email),
        user_id=user.id,
        session_id=session.id,
        expires_at=session.expires_at,
    )


def resolve_session(db: Session, token: Optional[str]) -> SessionContext:
    if not token:
        raise AuthenticationError("Missing session token")
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Session expired")
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid session token: {e}")

    session_id = claims.get("sid")
    session = db.get(AuthSession, session_id) if session_id else None
    if session is None or session.user_id != claims.get("sub"):
        raise AuthenticationError("Unknown session")
    if session.revoked_at is not None:
        raise AuthenticationError("Session has been signed out")
    if session.expires_at <= utcnow():
        raise AuthenticationError("Session expired")
    return SessionContext(user_id=session.user_id, email=session.user.email, session_id=session.id)


def sign_out(db: Session, context: SessionContext) -> None:
    session = db.get(AuthSession, context.session_id)
    if session is None or session.revoked_at is not None:
        return
    session.revoked_at = utcnow()
    db.commit()
    logger.info(f"Session {session.id} revoked for user {session.user_id}")

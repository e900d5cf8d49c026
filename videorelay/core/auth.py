"""Accounts and login sessions.

Passwords are bcrypt-hashed. A session is an opaque random token sent back
in the X-Session-Token header and valid for `session_ttl_days`. Emails are
normalized before every lookup, so " Ana@Example.COM " and "ana@example.com"
are the same account. Register, login and logout are audit-logged.
"""

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.config import settings
from videorelay.core.sanitizer import sanitize_email
from videorelay.dependencies import get_db
from videorelay.models.session import Session
from videorelay.models.user import User
from videorelay.services import audit_service

SESSION_TOKEN_HEADER = "X-Session-Token"

# Same answer for unknown email and wrong password.
AUTH_FAILED = "Authentication failed"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def session_ttl() -> timedelta:
    return timedelta(days=settings.session_ttl_days)


async def create_session(
    db: AsyncSession,
    user: User,
    *,
    now: datetime | None = None,
) -> Session:
    now = now or datetime.now(timezone.utc)
    session = Session(
        user_id=user.id,
        token=secrets.token_hex(32),
        created_at=now,
        expires_at=now + session_ttl(),
    )
    db.add(session)
    await db.flush()
    return session


async def prune_expired_sessions(
    db: AsyncSession,
    user: User,
    *,
    now: datetime | None = None,
) -> int:
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        delete(Session)
        .where(Session.user_id == user.id, Session.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def register_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    ip_address: str | None = None,
) -> tuple[User, str]:
    """Create an account and sign it in. Returns (user, session token).

    Raises 409 if the normalized email is already registered.
    """
    email = sanitize_email(email)
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    await db.flush()
    session = await create_session(db, user)

    await audit_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.register",
        entity_type="User",
        entity_id=user.id,
        action="register",
        detail={"email": email},
        ip_address=ip_address,
    )
    return user, session.token


async def login_user(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    ip_address: str | None = None,
) -> tuple[User, str]:
    email = sanitize_email(email)
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=AUTH_FAILED)

    now = datetime.now(timezone.utc)
    await prune_expired_sessions(db, user, now=now)
    session = await create_session(db, user, now=now)

    await audit_service.log_event(
        db,
        user_id=user.id,
        event_type="auth.login",
        entity_type="Session",
        entity_id=session.id,
        action="login",
        ip_address=ip_address,
    )
    return user, session.token


async def logout_user(
    db: AsyncSession,
    *,
    token: str | None,
    ip_address: str | None = None,
) -> bool:
    """Delete the session behind `token`. Returns False if there was none."""
    if not token:
        return False
    result = await db.execute(select(Session).where(Session.token == token))
    session = result.scalar_one_or_none()
    if session is None:
        return False

    await db.delete(session)
    await audit_service.log_event(
        db,
        user_id=session.user_id,
        event_type="auth.logout",
        entity_type="Session",
        entity_id=session.id,
        action="logout",
        ip_address=ip_address,
    )
    await db.flush()
    return True


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """FastAPI dependency: the user behind X-Session-Token, or 401."""
    token = request.headers.get(SESSION_TOKEN_HEADER)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    result = await db.execute(
        select(Session, User).join(User, Session.user_id == User.id).where(Session.token == token)
    )
    row = result.one_or_none()
    if row is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    session, user = row
    if session.is_expired(datetime.now(timezone.utc)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")

    request.state.user_id = str(user.id)
    return user

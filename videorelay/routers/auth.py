"""Auth routes: register, login, logout, me."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.core.auth import (
    SESSION_TOKEN_HEADER,
    get_current_user,
    login_user,
    logout_user,
    register_user,
)
from videorelay.dependencies import get_db
from videorelay.models.user import User
from videorelay.schemas.user import SessionResponse, UserCreate, UserRead

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.post("/register", response_model=SessionResponse, status_code=201)
async def register(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user, token = await register_user(
        db, email=body.email, password=body.password, ip_address=_client_ip(request)
    )
    return SessionResponse(token=token, user_id=str(user.id), email=user.email)


@router.post("/login", response_model=SessionResponse)
async def login(
    body: UserCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user, token = await login_user(
        db, email=body.email, password=body.password, ip_address=_client_ip(request)
    )
    return SessionResponse(token=token, user_id=str(user.id), email=user.email)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await logout_user(
        db, token=request.headers.get(SESSION_TOKEN_HEADER), ip_address=_client_ip(request)
    )


@router.get("/me", response_model=UserRead)
async def me(current_user: User = Depends(get_current_user)):
    return current_user

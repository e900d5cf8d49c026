"""Aggregator key routes: save credentials, list connected platforms."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.core.auth import get_current_user
from videorelay.core.crypto import CredentialCipher, CredentialDecryptError
from videorelay.dependencies import get_cipher, get_db
from videorelay.models.user import User
from videorelay.schemas.keys import KeysSave, PlatformList, PlatformRead
from videorelay.services import credential_service
from videorelay.services.aggregator import AggregatorError, get_aggregator

logger = logging.getLogger("videorelay.keys")

router = APIRouter(prefix="/api", tags=["keys"])


@router.post("/save-keys")
async def save_keys(
    body: KeysSave,
    request: Request,
    db: AsyncSession = Depends(get_db),
    cipher: CredentialCipher = Depends(get_cipher),
    current_user: User = Depends(get_current_user),
):
    """Save the aggregator access/secret key pair (encrypted at rest)."""
    ip = request.client.host if request.client else None
    await credential_service.save_keys(
        db,
        user_id=current_user.id,
        access_key=body.access_key,
        secret_key=body.secret_key,
        cipher=cipher,
        ip_address=ip,
    )
    logger.info("Aggregator keys saved for user %s", current_user.id)
    return {"success": True}


@router.get("/platforms", response_model=PlatformList)
async def list_platforms(
    db: AsyncSession = Depends(get_db),
    cipher: CredentialCipher = Depends(get_cipher),
    current_user: User = Depends(get_current_user),
):
    """Connected accounts available as upload targets."""
    try:
        credentials = await credential_service.get_credentials(
            db, user_id=current_user.id, cipher=cipher
        )
    except CredentialDecryptError:
        raise HTTPException(status_code=500, detail="Saved keys are unreadable. Please save them again.")
    if credentials is None:
        return PlatformList(platforms=[], message="No aggregator keys saved yet")

    try:
        accounts = await get_aggregator().list_accounts(credentials)
    except AggregatorError as e:
        raise HTTPException(status_code=400, detail=f"Failed to get accounts: {e}")

    return PlatformList(
        platforms=[
            PlatformRead(
                id=a.id, name=a.name, type=a.type, username=a.username, picture=a.picture
            )
            for a in accounts
        ]
    )

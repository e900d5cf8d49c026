"""Aggregator credentials: save (encrypted) and load (decrypted) per user."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.core.crypto import CredentialCipher
from videorelay.models.credential import AggregatorKey
from videorelay.services import audit_service
from videorelay.services.aggregator import AggregatorCredentials


async def save_keys(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    access_key: str,
    secret_key: str,
    cipher: CredentialCipher,
    ip_address: str | None = None,
) -> AggregatorKey:
    """Store the key pair encrypted, replacing any previous pair."""
    result = await db.execute(select(AggregatorKey).where(AggregatorKey.user_id == user_id))
    row = result.scalar_one_or_none()

    access_enc = cipher.encrypt(access_key)
    secret_enc = cipher.encrypt(secret_key)
    if row is None:
        row = AggregatorKey(
            user_id=user_id,
            access_key_encrypted=access_enc,
            secret_key_encrypted=secret_enc,
        )
        db.add(row)
        action = "create"
    else:
        row.access_key_encrypted = access_enc
        row.secret_key_encrypted = secret_enc
        action = "update"
    await db.flush()

    await audit_service.log_event(
        db,
        user_id=user_id,
        event_type="keys.saved",
        entity_type="AggregatorKey",
        entity_id=row.id,
        action=action,
        ip_address=ip_address,
    )
    return row


async def get_credentials(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    cipher: CredentialCipher,
) -> AggregatorCredentials | None:
    """Decrypted key pair for the user, or None if none was saved."""
    result = await db.execute(select(AggregatorKey).where(AggregatorKey.user_id == user_id))
    row = result.scalar_one_or_none()
    if row is None:
        return None
    return AggregatorCredentials(
        access_key=cipher.decrypt(row.access_key_encrypted),
        secret_key=cipher.decrypt(row.secret_key_encrypted),
    )

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.models.upload import UploadRecord
from videorelay.models.user import User


async def _create_user(db_session: AsyncSession) -> User:
    user = User(email="records@example.com", password_hash="fakehash")
    db_session.add(user)
    await db_session.commit()
    return user


def _record(user: User, filename: str) -> UploadRecord:
    now = datetime.now(timezone.utc)
    return UploadRecord(
        user_id=user.id,
        filename=filename,
        file_size_bytes=5 * 1024 * 1024 * 1024,
        mime_type="video/mp4",
        title="Launch teaser",
        description="First cut",
        uploaded_at=now,
        scheduled_deletion_at=now + timedelta(hours=48),
    )


@pytest.mark.asyncio
async def test_create_upload_record_defaults(db_session: AsyncSession):
    """New records are live and carry no deletion timestamp."""
    user = await _create_user(db_session)
    db_session.add(_record(user, "a1.mp4"))
    await db_session.commit()

    result = await db_session.execute(select(UploadRecord).where(UploadRecord.filename == "a1.mp4"))
    fetched = result.scalar_one()
    assert fetched.is_deleted is False
    assert fetched.deleted_at is None
    assert fetched.file_size_bytes == 5 * 1024 * 1024 * 1024


@pytest.mark.asyncio
async def test_upload_filename_unique(db_session: AsyncSession):
    """Storage keys identify exactly one record."""
    user = await _create_user(db_session)
    db_session.add(_record(user, "dup.mp4"))
    await db_session.commit()

    db_session.add(_record(user, "dup.mp4"))
    with pytest.raises(IntegrityError):
        await db_session.commit()

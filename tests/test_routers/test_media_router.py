from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.models.user import User
from videorelay.services import lifecycle_service


async def _seed(db: AsyncSession, storage, user: User, filename: str) -> None:
    await storage.save(filename, b"\x00video", "video/webm")
    await lifecycle_service.record_upload(
        db,
        user_id=user.id,
        filename=filename,
        file_size_bytes=6,
        mime_type="video/webm",
        title="Clip",
        description="Clip",
        now=datetime.now(timezone.utc),
    )
    await db.commit()


@pytest.mark.asyncio
async def test_serves_live_object(client: AsyncClient, db_session: AsyncSession, user: User, storage):
    await _seed(db_session, storage, user, "abc.webm")

    response = await client.get("/media/abc.webm")

    assert response.status_code == 200
    assert response.content == b"\x00video"
    assert response.headers["content-type"] == "video/webm"


@pytest.mark.asyncio
async def test_unknown_key_is_404(client: AsyncClient):
    response = await client.get("/media/nope.mp4")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_deleted_upload_is_404(
    client: AsyncClient, db_session: AsyncSession, user: User, storage
):
    await _seed(db_session, storage, user, "gone.webm")
    await lifecycle_service.delete_upload(db_session, storage, "gone.webm")
    await db_session.commit()

    response = await client.get("/media/gone.webm")
    assert response.status_code == 404

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.config import settings
from videorelay.models.user import User
from videorelay.services import lifecycle_service


async def _seed(db: AsyncSession, storage, user: User, filename: str, hours_ago: int) -> None:
    await storage.save(filename, b"bytes", "video/mp4")
    await lifecycle_service.record_upload(
        db,
        user_id=user.id,
        filename=filename,
        file_size_bytes=5,
        mime_type="video/mp4",
        title="Clip",
        description="Clip",
        retention_hours=48,
        now=datetime.now(timezone.utc) - timedelta(hours=hours_ago),
    )
    await db.commit()


@pytest.mark.asyncio
async def test_cleanup_deletes_expired_only(
    client: AsyncClient, db_session: AsyncSession, user: User, storage
):
    await _seed(db_session, storage, user, "old.mp4", hours_ago=49)
    await _seed(db_session, storage, user, "fresh.mp4", hours_ago=1)

    response = await client.post("/api/cleanup")

    assert response.status_code == 200
    assert response.json() == {"success": True, "deleted": 1, "failed": 0}
    assert not await storage.exists("old.mp4")
    assert await storage.exists("fresh.mp4")


@pytest.mark.asyncio
async def test_cleanup_get_with_nothing_to_do(client: AsyncClient):
    response = await client.get("/api/cleanup")
    assert response.status_code == 200
    assert response.json() == {"success": True, "deleted": 0, "failed": 0}


@pytest.mark.asyncio
async def test_cleanup_token_enforced(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "cleanup_token", "cron-secret")

    denied = await client.post("/api/cleanup")
    assert denied.status_code == 403

    wrong = await client.post("/api/cleanup", headers={"X-Cleanup-Token": "guess"})
    assert wrong.status_code == 403

    allowed = await client.post("/api/cleanup", headers={"X-Cleanup-Token": "cron-secret"})
    assert allowed.status_code == 200

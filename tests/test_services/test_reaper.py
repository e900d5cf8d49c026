import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text

from videorelay.models.user import User
from videorelay.services import lifecycle_service, reaper


async def _seed_expired(session_factory, storage, filename: str) -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=49)
    async with session_factory() as db:
        user = User(email=f"{filename}@example.com", password_hash="fakehash")
        db.add(user)
        await db.flush()
        await storage.save(filename, b"bytes", "video/mp4")
        await lifecycle_service.record_upload(
            db,
            user_id=user.id,
            filename=filename,
            file_size_bytes=5,
            mime_type="video/mp4",
            title="Old",
            description="Expired",
            retention_hours=48,
            now=past,
        )
        await db.commit()


@pytest.mark.asyncio
async def test_run_sweep_commits_in_own_session(session_factory, storage):
    await _seed_expired(session_factory, storage, "old.mp4")

    result = await reaper.run_sweep(session_factory, storage)

    assert result.deleted == 1
    assert not await storage.exists("old.mp4")
    async with session_factory() as db:
        record = await lifecycle_service.get_by_filename(db, "old.mp4")
        assert record.is_deleted is True


@pytest.mark.asyncio
async def test_run_sweep_defaults_to_configured_storage(session_factory, storage):
    await _seed_expired(session_factory, storage, "default.mp4")
    result = await reaper.run_sweep(session_factory)
    assert result.deleted == 1


@pytest.mark.asyncio
async def test_reaper_loop_survives_failed_sweep(session_factory, storage, monkeypatch):
    calls = []

    async def _flaky(factory, backend=None):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("db down")
        raise asyncio.CancelledError

    monkeypatch.setattr(reaper, "run_sweep", _flaky)

    with pytest.raises(asyncio.CancelledError):
        await reaper.reaper_loop(session_factory, interval_hours=0, storage=storage)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_run_sweep_keeps_marks_around_a_failed_record(session_factory, storage, monkeypatch):
    for filename in ("first.mp4", "broken.mp4", "last.mp4"):
        await _seed_expired(session_factory, storage, filename)
    async with session_factory() as db:
        broken_id = (await lifecycle_service.get_by_filename(db, "broken.mp4")).id

    mark_deleted = lifecycle_service._mark_deleted

    async def _mark_or_fail(db, *, now, record_id=None, filename=None):
        if record_id == broken_id:
            await db.execute(text("UPDATE missing_table SET is_deleted = 1"))
        return await mark_deleted(db, now=now, record_id=record_id, filename=filename)

    monkeypatch.setattr(lifecycle_service, "_mark_deleted", _mark_or_fail)

    result = await reaper.run_sweep(session_factory, storage)

    assert result.deleted == 2
    assert result.failed == 1
    assert result.errors[0].startswith("broken.mp4: ")
    async with session_factory() as db:
        marks = {
            name: (await lifecycle_service.get_by_filename(db, name)).is_deleted
            for name in ("first.mp4", "broken.mp4", "last.mp4")
        }
    assert marks == {"first.mp4": True, "broken.mp4": False, "last.mp4": True}

"""Upload lifecycle: durable records of stored objects and their deletion.

Every accepted upload gets an UploadRecord whose `scheduled_deletion_at` is
fixed at creation (upload time + retention window). Objects leave storage
through exactly two paths, both idempotent:

- delete_upload(): immediate cleanup of one key (rollback/error path).
- sweep(): the reaper, deleting everything past its deadline.

Marking a record deleted is a conditional UPDATE (`WHERE is_deleted = false`),
so concurrent deleters of the same record converge without locking.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.models.upload import UploadRecord
from videorelay.services.storage import StorageBackend

logger = logging.getLogger("videorelay.lifecycle")

DEFAULT_RETENTION_HOURS = 48


@dataclass
class SweepResult:
    deleted: int = 0
    failed: int = 0
    # Records another deleter marked first; neither deleted nor failed.
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def calculate_deletion_time(
    retention_hours: int = DEFAULT_RETENTION_HOURS,
    *,
    now: datetime | None = None,
) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(hours=retention_hours)


async def record_upload(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    filename: str,
    file_size_bytes: int,
    mime_type: str,
    title: str,
    description: str,
    retention_hours: int = DEFAULT_RETENTION_HOURS,
    now: datetime | None = None,
) -> UploadRecord:
    """Insert the lifecycle record for an object that is already in storage."""
    now = now or datetime.now(timezone.utc)
    record = UploadRecord(
        user_id=user_id,
        filename=filename,
        file_size_bytes=file_size_bytes,
        mime_type=mime_type,
        title=title,
        description=description,
        uploaded_at=now,
        scheduled_deletion_at=calculate_deletion_time(retention_hours, now=now),
        is_deleted=False,
        deleted_at=None,
    )
    db.add(record)
    await db.flush()
    return record


async def get_by_filename(db: AsyncSession, filename: str) -> UploadRecord | None:
    result = await db.execute(
        select(UploadRecord)
        .where(UploadRecord.filename == filename)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_for_user(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    include_deleted: bool = True,
    limit: int = 50,
) -> list[UploadRecord]:
    stmt = (
        select(UploadRecord)
        .where(UploadRecord.user_id == user_id)
        .order_by(UploadRecord.uploaded_at.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    if not include_deleted:
        stmt = stmt.where(UploadRecord.is_deleted.is_(False))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_expired(
    db: AsyncSession,
    *,
    now: datetime | None = None,
) -> list[UploadRecord]:
    """Records past their deadline whose object has not been deleted yet."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(UploadRecord)
        .where(
            UploadRecord.is_deleted.is_(False),
            UploadRecord.scheduled_deletion_at <= now,
        )
        .order_by(UploadRecord.scheduled_deletion_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _mark_deleted(
    db: AsyncSession,
    *,
    now: datetime,
    record_id: uuid.UUID | None = None,
    filename: str | None = None,
) -> bool:
    """One-way is_deleted transition. Returns False if it was already made."""
    stmt = update(UploadRecord).where(UploadRecord.is_deleted.is_(False))
    if record_id is not None:
        stmt = stmt.where(UploadRecord.id == record_id)
    else:
        stmt = stmt.where(UploadRecord.filename == filename)
    result = await db.execute(
        stmt.values(is_deleted=True, deleted_at=now).execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def delete_upload(
    db: AsyncSession,
    storage: StorageBackend,
    filename: str,
    *,
    now: datetime | None = None,
) -> bool:
    """Delete one object now and mark its record deleted.

    Safe to call repeatedly and for keys with no record (orphan cleanup).
    Storage errors propagate so the caller can decide whether to retry.
    Returns True if this call made the is_deleted transition.
    """
    now = now or datetime.now(timezone.utc)
    try:
        await storage.delete(filename)
    except Exception:
        logger.exception("Failed to delete object %s", filename)
        raise

    transitioned = await _mark_deleted(db, now=now, filename=filename)
    logger.debug(
        "Deleted upload %s (%s)", filename, "marked" if transitioned else "already marked or untracked"
    )
    return transitioned


async def sweep(
    db: AsyncSession,
    storage: StorageBackend,
    *,
    now: datetime | None = None,
) -> SweepResult:
    """Reap every expired upload. One failing record never stops the sweep."""
    now = now or datetime.now(timezone.utc)
    logger.info("Starting cleanup of expired uploads")

    expired = [(r.id, r.filename) for r in await find_expired(db, now=now)]
    result = SweepResult()
    if not expired:
        logger.info("No expired uploads found")
        return result

    logger.info("Found %d uploads to clean up", len(expired))
    for record_id, filename in expired:
        try:
            # Savepoint per record: a failed mark must not abort the marks already made.
            async with db.begin_nested():
                await storage.delete(filename)
                transitioned = await _mark_deleted(db, now=now, record_id=record_id)
        except Exception as e:
            logger.error("Failed to delete expired upload %s: %s", filename, e)
            result.failed += 1
            result.errors.append(f"{filename}: {e}")
            continue
        if transitioned:
            result.deleted += 1
        else:
            logger.debug("Upload %s already marked deleted by another sweep", filename)
            result.skipped += 1

    logger.info(
        "Cleanup completed: %d deleted, %d failed, %d skipped",
        result.deleted,
        result.failed,
        result.skipped,
    )
    return result

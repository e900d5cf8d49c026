"""Quota ledger: rolling daily/monthly upload counts and byte totals per user.

check_quota() decides admit/deny and never consumes quota. The orchestrator
commits usage with increment_quota() only after the object is stored, and
compensates with decrement_quota() on rollback.

Counters change only through single atomic UPDATE statements
(`col = col + :delta`), so concurrent uploads by the same user cannot lose
updates. Decrements clamp at zero.

Windows reset lazily when a check observes them to be stale: the daily
window after 24 hours, the monthly window after 30 days, independently.
"""

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.models.quota import QuotaRecord

logger = logging.getLogger("videorelay.quota")

DAILY_WINDOW = timedelta(hours=24)
MONTHLY_WINDOW = timedelta(days=30)


class QuotaRecordMissing(LookupError):
    """increment_quota() was called for a user that was never checked."""


@dataclass(frozen=True)
class QuotaLimits:
    max_daily_uploads: int
    max_monthly_uploads: int
    max_daily_bytes: int
    max_monthly_bytes: int

    @classmethod
    def from_settings(cls, settings) -> "QuotaLimits":
        return cls(
            max_daily_uploads=settings.max_daily_uploads,
            max_monthly_uploads=settings.max_monthly_uploads,
            max_daily_bytes=settings.max_daily_bytes,
            max_monthly_bytes=settings.max_monthly_bytes,
        )

    def as_dict(self) -> dict:
        return {
            "maxDailyUploads": self.max_daily_uploads,
            "maxMonthlyUploads": self.max_monthly_uploads,
            "maxDailyBytes": self.max_daily_bytes,
            "maxMonthlyBytes": self.max_monthly_bytes,
        }


@dataclass(frozen=True)
class QuotaUsage:
    daily_uploads: int
    monthly_uploads: int
    daily_bytes: int
    monthly_bytes: int

    @classmethod
    def of(cls, record: QuotaRecord) -> "QuotaUsage":
        return cls(
            daily_uploads=record.daily_uploads,
            monthly_uploads=record.monthly_uploads,
            daily_bytes=record.daily_bytes_used,
            monthly_bytes=record.monthly_bytes_used,
        )

    def as_dict(self) -> dict:
        return {
            "dailyUploads": self.daily_uploads,
            "monthlyUploads": self.monthly_uploads,
            "dailyBytes": self.daily_bytes,
            "monthlyBytes": self.monthly_bytes,
        }


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    current: QuotaUsage
    limits: QuotaLimits
    reason: str | None = None

    def snapshot(self) -> dict:
        return {"current": self.current.as_dict(), "limits": self.limits.as_dict()}


class RecordOrigin(str, enum.Enum):
    created = "created"
    existing = "existing"


@dataclass(frozen=True)
class QuotaLookup:
    record: QuotaRecord
    origin: RecordOrigin

    @property
    def created(self) -> bool:
        return self.origin is RecordOrigin.created


async def _load(db: AsyncSession, user_id: uuid.UUID) -> QuotaRecord | None:
    # populate_existing: counters are changed by bulk UPDATEs behind the identity map.
    result = await db.execute(
        select(QuotaRecord)
        .where(QuotaRecord.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_quota_record(db: AsyncSession, user_id: uuid.UUID) -> QuotaRecord | None:
    return await _load(db, user_id)


async def get_or_create(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    now: datetime | None = None,
) -> QuotaLookup:
    """Return the user's quota record, creating a zeroed one on first touch."""
    record = await _load(db, user_id)
    if record is not None:
        return QuotaLookup(record, RecordOrigin.existing)

    now = now or datetime.now(timezone.utc)
    record = QuotaRecord(
        user_id=user_id,
        daily_uploads=0,
        monthly_uploads=0,
        daily_bytes_used=0,
        monthly_bytes_used=0,
        last_reset_daily=now,
        last_reset_monthly=now,
    )
    db.add(record)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent first upload created it; the failed INSERT poisons the
        # transaction, so start over and read the winner.
        await db.rollback()
        record = await _load(db, user_id)
        if record is None:
            raise
        return QuotaLookup(record, RecordOrigin.existing)
    return QuotaLookup(record, RecordOrigin.created)


async def _reset_stale_windows(db: AsyncSession, user_id: uuid.UUID, now: datetime) -> None:
    daily = await db.execute(
        update(QuotaRecord)
        .where(
            QuotaRecord.user_id == user_id,
            QuotaRecord.last_reset_daily <= now - DAILY_WINDOW,
        )
        .values(daily_uploads=0, daily_bytes_used=0, last_reset_daily=now)
        .execution_options(synchronize_session=False)
    )
    monthly = await db.execute(
        update(QuotaRecord)
        .where(
            QuotaRecord.user_id == user_id,
            QuotaRecord.last_reset_monthly <= now - MONTHLY_WINDOW,
        )
        .values(monthly_uploads=0, monthly_bytes_used=0, last_reset_monthly=now)
        .execution_options(synchronize_session=False)
    )
    if daily.rowcount:
        logger.debug("Daily quota window reset for user %s", user_id)
    if monthly.rowcount:
        logger.debug("Monthly quota window reset for user %s", user_id)


def evaluate(usage: QuotaUsage, limits: QuotaLimits, incoming_bytes: int) -> str | None:
    """Return the first violated limit as a message, or None if allowed."""
    if usage.daily_uploads >= limits.max_daily_uploads:
        return f"Daily upload limit exceeded ({limits.max_daily_uploads} uploads/day)"
    if usage.monthly_uploads >= limits.max_monthly_uploads:
        return f"Monthly upload limit exceeded ({limits.max_monthly_uploads} uploads/month)"
    if usage.daily_bytes + incoming_bytes > limits.max_daily_bytes:
        return f"Daily bandwidth limit exceeded ({limits.max_daily_bytes // (1024 * 1024)}MB/day)"
    if usage.monthly_bytes + incoming_bytes > limits.max_monthly_bytes:
        limit_gb = limits.max_monthly_bytes / (1024 * 1024 * 1024)
        return f"Monthly bandwidth limit exceeded ({limit_gb:g}GB/month)"
    return None


async def check_quota(
    db: AsyncSession,
    *,
    user_id: uuid.UUID,
    incoming_bytes: int,
    limits: QuotaLimits,
    now: datetime | None = None,
) -> QuotaStatus:
    """Decide whether `incoming_bytes` more may be uploaded. Consumes nothing."""
    if incoming_bytes < 0:
        raise ValueError("incoming_bytes must be non-negative")
    now = now or datetime.now(timezone.utc)

    await get_or_create(db, user_id, now=now)
    await _reset_stale_windows(db, user_id, now)
    record = await _load(db, user_id)

    usage = QuotaUsage.of(record)
    reason = evaluate(usage, limits, incoming_bytes)
    return QuotaStatus(allowed=reason is None, current=usage, limits=limits, reason=reason)


async def increment_quota(db: AsyncSession, *, user_id: uuid.UUID, size_bytes: int) -> None:
    """Count one upload of `size_bytes` against both windows."""
    result = await db.execute(
        update(QuotaRecord)
        .where(QuotaRecord.user_id == user_id)
        .values(
            daily_uploads=QuotaRecord.daily_uploads + 1,
            monthly_uploads=QuotaRecord.monthly_uploads + 1,
            daily_bytes_used=QuotaRecord.daily_bytes_used + size_bytes,
            monthly_bytes_used=QuotaRecord.monthly_bytes_used + size_bytes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise QuotaRecordMissing(f"Quota record not found for user {user_id}")


def _clamped_sub(column, delta: int):
    return case((column > delta, column - delta), else_=0)


async def decrement_quota(db: AsyncSession, *, user_id: uuid.UUID, size_bytes: int) -> None:
    """Compensate one upload. Clamps at zero; no-op if the user has no record."""
    await db.execute(
        update(QuotaRecord)
        .where(QuotaRecord.user_id == user_id)
        .values(
            daily_uploads=_clamped_sub(QuotaRecord.daily_uploads, 1),
            monthly_uploads=_clamped_sub(QuotaRecord.monthly_uploads, 1),
            daily_bytes_used=_clamped_sub(QuotaRecord.daily_bytes_used, size_bytes),
            monthly_bytes_used=_clamped_sub(QuotaRecord.monthly_bytes_used, size_bytes),
        )
        .execution_options(synchronize_session=False)
    )

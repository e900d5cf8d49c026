"""Upload orchestration: validate → quota → store → commit → resolve → fan-out.

The steps run strictly in that order; each step's postcondition is the next
one's precondition (quota is only consumed once the object exists, a
lifecycle record only exists for stored bytes).

Compensation rules:

- validation / quota rejection: nothing was mutated.
- storage write failure: nothing else was mutated.
- accounting failure: the increment is compensated and the object removed.
- target resolution failure (including no usable accounts): full rollback,
  the object is deleted, its record marked deleted, quota decremented.
- every target failed: the upload is kept for inspection; the reaper removes
  it at its scheduled deletion time.
- anything unexpected: catch-all cleanup of the object and, if the record
  was still live, of its quota.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.core.errors import (
    AccountingError,
    DeliveryFailedError,
    QuotaExceededError,
    RelayError,
    StorageWriteError,
    TargetResolutionError,
    UploadFailedError,
    UploadValidationError,
)
from videorelay.core.sanitizer import sanitize_text
from videorelay.schemas.upload import FanOutResult
from videorelay.services import audit_service, fanout_service, lifecycle_service, quota_service
from videorelay.services.aggregator import AggregatorClient, AggregatorCredentials
from videorelay.services.quota_service import QuotaLimits
from videorelay.services.storage import StorageBackend, build_media_url, generate_storage_key

logger = logging.getLogger("videorelay.upload")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 2000


@dataclass(frozen=True)
class PipelineConfig:
    limits: QuotaLimits
    max_file_size: int
    allowed_types: frozenset[str]
    retention_hours: int
    media_base_url: str

    @classmethod
    def from_settings(cls, settings) -> "PipelineConfig":
        return cls(
            limits=QuotaLimits.from_settings(settings),
            max_file_size=settings.max_file_size,
            allowed_types=settings.allowed_video_types_set,
            retention_hours=settings.file_retention_hours,
            media_base_url=settings.media_base_url,
        )


@dataclass(frozen=True)
class UploadRequest:
    data: bytes | None
    content_type: str | None
    title: str | None
    description: str | None
    platforms: list[str] | None = None


@dataclass
class UploadOutcome:
    upload_id: uuid.UUID
    filename: str
    scheduled_deletion_at: datetime
    results: list[FanOutResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return fanout_service.count_successes(self.results)

    @property
    def message(self) -> str:
        return f"Successfully scheduled to {self.success_count} out of {len(self.results)} accounts"


def parse_platforms(raw: str | None) -> list[str] | None:
    """Comma-separated platform filter; blank means every platform."""
    if not raw:
        return None
    platforms = [p.strip() for p in raw.split(",") if p.strip()]
    return platforms or None


def validate_request(request: UploadRequest, config: PipelineConfig) -> tuple[str, str]:
    """Check the request and return the sanitized (title, description)."""
    if not request.data or request.title is None or request.description is None:
        raise UploadValidationError("Missing required fields: video, title, description")

    title = sanitize_text(request.title)
    description = sanitize_text(request.description)
    if not title:
        raise UploadValidationError("Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise UploadValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    if not description:
        raise UploadValidationError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise UploadValidationError(
            f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
        )

    content_type = request.content_type or ""
    if not content_type.startswith("video/"):
        raise UploadValidationError("Invalid file type. Only video files are allowed.")
    if content_type not in config.allowed_types:
        raise UploadValidationError(
            f"Unsupported video type: {content_type}. "
            f"Allowed: {', '.join(sorted(config.allowed_types))}"
        )
    if len(request.data) > config.max_file_size:
        raise UploadValidationError(
            f"File too large. Maximum size: {config.max_file_size // (1024 * 1024)}MB"
        )
    return title, description


class UploadOrchestrator:
    def __init__(
        self,
        *,
        storage: StorageBackend,
        aggregator: AggregatorClient,
        config: PipelineConfig,
    ):
        self.storage = storage
        self.aggregator = aggregator
        self.config = config

    async def upload(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        credentials: AggregatorCredentials | None,
        request: UploadRequest,
        ip_address: str | None = None,
    ) -> UploadOutcome:
        if credentials is None:
            raise UploadValidationError("Aggregator keys not found. Please save your keys first.")
        title, description = validate_request(request, self.config)
        size = len(request.data)

        status = await quota_service.check_quota(
            db, user_id=user_id, incoming_bytes=size, limits=self.config.limits
        )
        # Keep the lazily created record / window resets even on rejection.
        await db.commit()
        if not status.allowed:
            logger.warning(
                "Upload blocked, quota exceeded for user %s: %s", user_id, status.reason
            )
            raise QuotaExceededError(status)

        key = generate_storage_key(request.content_type)
        try:
            return await self._store_and_deliver(
                db,
                user_id=user_id,
                credentials=credentials,
                key=key,
                request=request,
                title=title,
                description=description,
                ip_address=ip_address,
            )
        except RelayError:
            raise
        except Exception as e:
            logger.exception("Upload error for %s", key)
            await self._cleanup_after_error(db, user_id=user_id, key=key)
            raise UploadFailedError() from e

    async def _store_and_deliver(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        credentials: AggregatorCredentials,
        key: str,
        request: UploadRequest,
        title: str,
        description: str,
        ip_address: str | None,
    ) -> UploadOutcome:
        size = len(request.data)
        try:
            await self.storage.save(key, request.data, request.content_type)
        except Exception as e:
            logger.error("Failed to write object %s: %s", key, e)
            raise StorageWriteError() from e

        record = await self._commit_accounting(
            db,
            user_id=user_id,
            key=key,
            size=size,
            mime_type=request.content_type,
            title=title,
            description=description,
            ip_address=ip_address,
        )
        outcome = UploadOutcome(
            upload_id=record.id,
            filename=key,
            scheduled_deletion_at=record.scheduled_deletion_at,
        )
        logger.info(
            "Stored upload %s (%d bytes, %s), scheduled for deletion at %s",
            key, size, request.content_type, outcome.scheduled_deletion_at.isoformat(),
        )

        try:
            accounts = await self.aggregator.list_accounts(credentials)
        except Exception as e:
            logger.error("Failed to get aggregator accounts: %s", e)
            await self._rollback(db, user_id=user_id, key=key, size=size, reason="accounts_failed")
            raise TargetResolutionError(
                f"Failed to get accounts: {e}",
                unauthorized=getattr(e, "unauthorized", False),
            ) from e

        if not accounts:
            await self._rollback(db, user_id=user_id, key=key, size=size, reason="no_accounts")
            raise TargetResolutionError(
                "No connected accounts found. Please connect at least one account."
            )
        targets = fanout_service.filter_accounts(accounts, request.platforms)
        if not targets:
            await self._rollback(db, user_id=user_id, key=key, size=size, reason="no_targets")
            raise TargetResolutionError(
                "None of your connected accounts match the selected platforms."
            )

        logger.info("Scheduling %s to %d accounts", key, len(targets))
        context = fanout_service.UploadContext(
            title=title,
            description=description,
            media_url=build_media_url(self.config.media_base_url, key),
            schedule_at=datetime.now(timezone.utc),
        )
        outcome.results = await fanout_service.dispatch(
            self.aggregator, credentials, context, targets
        )

        if outcome.success_count == 0:
            # Kept for diagnosis; the reaper deletes it on schedule.
            logger.warning("All %d schedule requests failed for %s", len(targets), key)
            raise DeliveryFailedError(outcome.results)
        return outcome

    async def _commit_accounting(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        key: str,
        size: int,
        mime_type: str,
        title: str,
        description: str,
        ip_address: str | None,
    ):
        try:
            await quota_service.increment_quota(db, user_id=user_id, size_bytes=size)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("Failed to increment quota for %s: %s", key, e)
            await self._discard_object(key)
            raise AccountingError() from e

        try:
            record = await lifecycle_service.record_upload(
                db,
                user_id=user_id,
                filename=key,
                file_size_bytes=size,
                mime_type=mime_type,
                title=title,
                description=description,
                retention_hours=self.config.retention_hours,
            )
            await audit_service.log_event(
                db,
                user_id=user_id,
                event_type="upload.accepted",
                entity_type="UploadRecord",
                entity_id=record.id,
                action="upload",
                detail={"filename": key, "file_size_bytes": size, "mime_type": mime_type},
                ip_address=ip_address,
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.error("Failed to record upload %s, compensating quota: %s", key, e)
            try:
                await quota_service.decrement_quota(db, user_id=user_id, size_bytes=size)
                await db.commit()
            except Exception:
                await db.rollback()
                logger.critical(
                    "Quota compensation failed for user %s, upload %s (%d bytes); "
                    "manual reconciliation required",
                    user_id, key, size,
                )
            await self._discard_object(key)
            raise AccountingError() from e
        return record

    async def _discard_object(self, key: str) -> None:
        try:
            await self.storage.delete(key)
        except Exception:
            logger.critical(
                "Orphaned object %s has no lifecycle record; manual reconciliation required", key
            )

    async def _rollback(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        key: str,
        size: int,
        reason: str,
    ) -> None:
        """Undo a committed upload: object, lifecycle record and quota."""
        record = await lifecycle_service.get_by_filename(db, key)
        transitioned = await lifecycle_service.delete_upload(db, self.storage, key)
        if transitioned:
            await quota_service.decrement_quota(db, user_id=user_id, size_bytes=size)
        if record is not None:
            await audit_service.log_event(
                db,
                user_id=user_id,
                event_type="upload.rolled_back",
                entity_type="UploadRecord",
                entity_id=record.id,
                action="rollback",
                detail={"filename": key, "reason": reason},
            )
        await db.commit()
        logger.info("Rolled back upload %s (%s)", key, reason)

    async def _cleanup_after_error(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        key: str,
    ) -> None:
        try:
            await db.rollback()
            record = await lifecycle_service.get_by_filename(db, key)
            transitioned = await lifecycle_service.delete_upload(db, self.storage, key)
            # Only a live record still holds quota; a marked one was already compensated.
            if record is not None and transitioned:
                await quota_service.decrement_quota(
                    db, user_id=user_id, size_bytes=record.file_size_bytes
                )
            await db.commit()
        except Exception:
            logger.exception("Failed to clean up after upload error for %s", key)

"""Upload routes: upload-and-schedule, upload history, quota snapshot."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.core.auth import get_current_user
from videorelay.core.crypto import CredentialCipher, CredentialDecryptError
from videorelay.dependencies import get_cipher, get_db, get_orchestrator, get_pipeline_config
from videorelay.models.user import User
from videorelay.schemas.upload import QuotaRead, UploadRecordRead, UploadResponse
from videorelay.services import credential_service, lifecycle_service, quota_service
from videorelay.services.upload_service import (
    PipelineConfig,
    UploadOrchestrator,
    UploadRequest,
    parse_platforms,
)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload", response_model=UploadResponse)
async def upload_video(
    request: Request,
    video: UploadFile | None = File(None),
    title: str | None = Form(None),
    description: str | None = Form(None),
    platforms: str | None = Form(None),
    db: AsyncSession = Depends(get_db),
    cipher: CredentialCipher = Depends(get_cipher),
    orchestrator: UploadOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
):
    """Store a video and schedule it to every selected connected account."""
    # The pipeline commits and may roll back; don't touch ORM state afterwards.
    user_id = current_user.id
    ip = request.client.host if request.client else None

    try:
        credentials = await credential_service.get_credentials(db, user_id=user_id, cipher=cipher)
    except CredentialDecryptError:
        raise HTTPException(status_code=500, detail="Saved keys are unreadable. Please save them again.")

    data = None
    if video is not None:
        # One byte past the limit is enough for validation to reject it.
        data = await video.read(orchestrator.config.max_file_size + 1)
    upload_request = UploadRequest(
        data=data,
        content_type=video.content_type if video is not None else None,
        title=title,
        description=description,
        platforms=parse_platforms(platforms),
    )
    outcome = await orchestrator.upload(
        db,
        user_id=user_id,
        credentials=credentials,
        request=upload_request,
        ip_address=ip,
    )
    return UploadResponse(
        message=outcome.message,
        upload_id=outcome.upload_id,
        scheduled_deletion_at=outcome.scheduled_deletion_at,
        results=outcome.results,
    )


@router.get("/uploads", response_model=list[UploadRecordRead])
async def list_uploads(
    include_deleted: bool = True,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The caller's uploads, newest first."""
    records = await lifecycle_service.list_for_user(
        db, user_id=current_user.id, include_deleted=include_deleted
    )
    return [UploadRecordRead.model_validate(r) for r in records]


@router.get("/quota", response_model=QuotaRead)
async def get_quota(
    db: AsyncSession = Depends(get_db),
    config: PipelineConfig = Depends(get_pipeline_config),
    current_user: User = Depends(get_current_user),
):
    """Current usage in both rolling windows. Consumes nothing."""
    status = await quota_service.check_quota(
        db, user_id=current_user.id, incoming_bytes=0, limits=config.limits
    )
    return status.snapshot()

"""Administrative trigger for the reaper. Same sweep as the scheduled one."""

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.config import settings
from videorelay.dependencies import get_db
from videorelay.schemas.cleanup import SweepResponse
from videorelay.services import lifecycle_service
from videorelay.services.storage import get_storage

logger = logging.getLogger("videorelay.reaper")

CLEANUP_TOKEN_HEADER = "X-Cleanup-Token"

router = APIRouter(prefix="/api", tags=["cleanup"])


def require_cleanup_token(request: Request) -> None:
    expected = settings.cleanup_token
    if not expected:
        return
    supplied = request.headers.get(CLEANUP_TOKEN_HEADER) or ""
    if not secrets.compare_digest(supplied, expected):
        raise HTTPException(status_code=403, detail="Invalid cleanup token")


@router.api_route(
    "/cleanup",
    methods=["GET", "POST"],
    response_model=SweepResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_cleanup_token)],
)
async def run_cleanup(db: AsyncSession = Depends(get_db)):
    """Delete every upload past its scheduled deletion time."""
    logger.info("Cleanup triggered via API")
    result = await lifecycle_service.sweep(db, get_storage())
    return SweepResponse(
        deleted=result.deleted,
        failed=result.failed,
        errors=result.errors or None,
    )

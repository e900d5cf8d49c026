"""Public media route: serves stored objects to the aggregator by key."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from videorelay.dependencies import get_db
from videorelay.services import lifecycle_service
from videorelay.services.storage import get_storage

router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{key}")
async def get_media(key: str, db: AsyncSession = Depends(get_db)):
    record = await lifecycle_service.get_by_filename(db, key)
    if record is None or record.is_deleted:
        raise HTTPException(status_code=404, detail="Not Found")
    try:
        data = await get_storage().load(key)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Not Found")
    return Response(
        content=data,
        media_type=record.mime_type,
        headers={"Cache-Control": "public, max-age=3600"},
    )

"""Request dependencies: DB sessions, credential cipher, upload pipeline."""

from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from videorelay.config import settings
from videorelay.core.crypto import CredentialCipher
from videorelay.services.aggregator import get_aggregator
from videorelay.services.storage import get_storage
from videorelay.services.upload_service import PipelineConfig, UploadOrchestrator

engine = create_async_engine(settings.database_url, pool_pre_ping=True)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a session per request; commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@lru_cache
def get_cipher() -> CredentialCipher:
    return CredentialCipher(settings.encryption_key)


def get_pipeline_config() -> PipelineConfig:
    return PipelineConfig.from_settings(settings)


def get_orchestrator(
    config: PipelineConfig = Depends(get_pipeline_config),
) -> UploadOrchestrator:
    return UploadOrchestrator(storage=get_storage(), aggregator=get_aggregator(), config=config)

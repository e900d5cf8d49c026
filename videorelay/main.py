import asyncio
import contextlib
import logging
import warnings
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from videorelay.config import settings
from videorelay.core.errors import register_error_handlers
from videorelay.core.logging_config import configure_logging
from videorelay.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from videorelay.core.rate_limit import RateLimitMiddleware
from videorelay.dependencies import async_session_factory, engine
from videorelay.routers import auth, cleanup, keys, media, upload
from videorelay.services.reaper import reaper_loop

configure_logging(settings.log_level)

# Validate secrets in production
if settings.is_production and settings.secret_key == "change-me-in-production":
    raise RuntimeError(
        "SECRET_KEY must be set to a secure random value in production. "
        "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
    )
if settings.is_production and settings.encryption_key == "change-me-in-production":
    raise RuntimeError("ENCRYPTION_KEY must be set in production.")

if not settings.is_production and settings.secret_key == "change-me-in-production":
    warnings.warn("SECRET_KEY is using default value. Set it for production.", stacklevel=1)

logger = logging.getLogger("videorelay")


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Create database tables on startup and run the reaper if enabled."""
    from videorelay.models.base import Base
    import videorelay.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables verified/created")

    reaper_task = None
    if settings.reaper_enabled:
        reaper_task = asyncio.create_task(
            reaper_loop(async_session_factory, settings.cleanup_interval_hours)
        )
    yield
    if reaper_task is not None:
        reaper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reaper_task
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Middleware: last added = outermost. CORS outermost so 429s get CORS headers too;
# security headers outside the rate limiter so 429s carry them as well.
cors_kwargs = {
    "allow_origins": settings.cors_origins_list,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
    "expose_headers": ["x-request-id"],
}
if settings.cors_allow_origin_regex:
    cors_kwargs["allow_origin_regex"] = settings.cors_allow_origin_regex
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(CORSMiddleware, **cors_kwargs)

# Error handlers
register_error_handlers(app)

# Routers
app.include_router(auth.router)
app.include_router(keys.router)
app.include_router(upload.router)
app.include_router(cleanup.router)
app.include_router(media.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "version": "0.1.0"}

"""HTTP middleware: per-request context with an access log, and security headers."""

import hashlib
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from videorelay.config import settings

logger = logging.getLogger("videorelay.access")

REQUEST_ID_HEADER = "X-Request-ID"

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data: https:",
        "font-src 'self' data:",
        "connect-src 'self'",
        "media-src 'self' https:",
        "object-src 'none'",
        "frame-src 'none'",
        "base-uri 'self'",
        "form-action 'self'",
        "frame-ancestors 'none'",
    ]
)

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
}

# Sent only in production, the one deployment served over HTTPS.
STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag the request with an id and log one access line when it finishes.

    An incoming X-Request-ID is kept so a trace can span the proxy in front.
    The user is logged as a digest, and only once auth has set
    `request.state.user_id`.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            _log_access(request, 500, start)
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        _log_access(request, response.status_code, start)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = STRICT_TRANSPORT_SECURITY
        return response


def _log_access(request: Request, status_code: int, start: float) -> None:
    user_id = getattr(request.state, "user_id", None)
    logger.info(
        "request_id=%s user=%s ip=%s method=%s path=%s status=%d elapsed_ms=%.1f",
        getattr(request.state, "request_id", "-"),
        user_digest(user_id) if user_id else "-",
        request.client.host if request.client else "-",
        request.method,
        request.url.path,
        status_code,
        (time.monotonic() - start) * 1000,
    )


def user_digest(user_id) -> str:
    """First 12 hex chars of SHA-256, so logs never carry raw user ids."""
    return hashlib.sha256(str(user_id).encode()).hexdigest()[:12]

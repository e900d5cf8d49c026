"""In-memory rate limiting middleware.

Limits:
  /api/auth/login     → 5 requests/hour per IP
  /api/auth/register  → 3 requests/hour per IP
  /api/upload         → 20 requests/hour per session
  /api/save-keys      → 10 requests/hour per session

Counters live in process memory, so limits are per instance. Only active
in production.
"""

import time
from collections import defaultdict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

# (path prefix, max_requests, window_seconds)
_IP_RULES: list[tuple[str, int, int]] = [
    ("/api/auth/login", 5, 3600),
    ("/api/auth/register", 3, 3600),
]

_SESSION_RULES: list[tuple[str, int, int]] = [
    ("/api/upload", 20, 3600),
    ("/api/save-keys", 10, 3600),
]


class SlidingWindowCounter:
    """Sliding-window hit counter keyed by arbitrary strings."""

    def __init__(self) -> None:
        self._hits: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, key: str, max_requests: int, window: int) -> bool:
        now = time.monotonic()
        cutoff = now - window
        self._hits[key] = hits = [t for t in self._hits[key] if t > cutoff]
        if len(hits) >= max_requests:
            return False
        hits.append(now)
        return True


_ip_counter = SlidingWindowCounter()
_session_counter = SlidingWindowCounter()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        from videorelay.config import settings
        if not settings.is_production or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        ip = client_ip(request)

        for prefix, max_req, window in _IP_RULES:
            if path.startswith(prefix):
                if not _ip_counter.is_allowed(f"ip:{ip}:{prefix}", max_req, window):
                    return _rate_limit_response(request, window)

        # Session rules key on the token; user ids are not resolved yet.
        token = request.headers.get("X-Session-Token")
        if token:
            for prefix, max_req, window in _SESSION_RULES:
                if path.startswith(prefix):
                    key = f"session:{token}:{prefix}"
                    if not _session_counter.is_allowed(key, max_req, window):
                        return _rate_limit_response(request, window)

        return await call_next(request)


def _rate_limit_response(request: Request, window: int) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded. Please try again later.",
            "statusCode": 429,
            "retryAfter": window,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers={"Retry-After": str(window)},
    )

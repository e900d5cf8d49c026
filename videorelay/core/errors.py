"""Structured error responses and the upload pipeline's error taxonomy.

Every error leaves the API as `{"error": <message>, "statusCode": <code>,
"request_id": <id>}`, optionally extended with machine-readable detail
(`quota` on quota rejections, `results` on a failed fan-out).
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("videorelay.errors")


class RelayError(Exception):
    """Base class for errors surfaced to the client with a stable status code."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def extra(self) -> dict[str, Any]:
        return {}


class UploadValidationError(RelayError):
    """Malformed or missing input. Raised before any quota or storage cost."""

    status_code = status.HTTP_400_BAD_REQUEST


class QuotaExceededError(RelayError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, quota_status):
        super().__init__(quota_status.reason or "Quota exceeded")
        self.quota_status = quota_status

    def extra(self) -> dict[str, Any]:
        return {"quota": self.quota_status.snapshot()}


class StorageWriteError(RelayError):
    """Writing the object failed. Nothing else was mutated."""

    def __init__(self, message: str = "Failed to store upload"):
        super().__init__(message)


class AccountingError(RelayError):
    """Quota increment or lifecycle record failed after the object was written."""

    def __init__(self, message: str = "Failed to record upload"):
        super().__init__(message)


class TargetResolutionError(RelayError):
    """Delivery targets could not be enumerated; the upload was rolled back."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, unauthorized: bool = False):
        super().__init__(message)
        self.unauthorized = unauthorized


class DeliveryFailedError(RelayError):
    """Every target account rejected the schedule request."""

    def __init__(self, results: list, message: str = "Failed to schedule to any account"):
        super().__init__(message)
        self.results = results

    def extra(self) -> dict[str, Any]:
        return {"results": [r.model_dump(by_alias=True, exclude_none=True) for r in self.results]}


class UploadFailedError(RelayError):
    def __init__(self, message: str = "Upload failed"):
        super().__init__(message)


def _error_body(request: Request, status_code: int, message: Any, **extra: Any) -> dict:
    return {
        "error": message,
        "statusCode": status_code,
        "request_id": getattr(request.state, "request_id", None),
        **extra,
    }


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, exc.message, **exc.extra()),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(request, 422, "Validation error", errors=jsonable_encoder(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, 500, "Internal server error"),
        )

"""Domain errors and their HTTP translation.

Services raise these; a single exception handler turns them into
``{"detail": ..., "error": ...}`` responses so routes stay free of
status-code bookkeeping.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    code = "storage_error"
    default_message = "Internal storage error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(StorageError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class Forbidden(StorageError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied. Insufficient permissions."


class NotFound(StorageError):
    status_code = 404
    code = "not_found"
    default_message = "File not found"


class BlobMissing(StorageError):
    """The metadata record exists but its bytes are gone from disk."""
    status_code = 404
    code = "blob_missing"
    default_message = "File content not found on disk"


class QuotaExceeded(StorageError):
    status_code = 403
    code = "quota_exceeded"
    default_message = "Storage quota exceeded"


class InvalidFileName(StorageError):
    status_code = 400
    code = "invalid_file_name"
    default_message = "Invalid file name"


class MissingUpload(StorageError):
    status_code = 400
    code = "missing_upload"
    default_message = "No file uploaded"


class PayloadTooLarge(StorageError):
    status_code = 413
    code = "payload_too_large"
    default_message = "Uploaded file exceeds the size limit"


class ReconciliationInProgress(StorageError):
    status_code = 409
    code = "reconciliation_in_progress"
    default_message = "A cleanup run is already in progress"


class UpstreamIdentityError(StorageError):
    status_code = 502
    code = "upstream_identity_error"
    default_message = "Identity provider request failed"


async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorageError, storage_error_handler)

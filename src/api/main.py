"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from api.routers import health, versions
from core.config import get_settings
from services.exceptions import (
    CorruptHistoryError,
    CyclicHistoryError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    PatchApplicationFailedError,
    TransactionFailedError,
    VersioningError,
    VersionValidationError,
)

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking - API shouldn't be framed
        response.headers["X-Frame-Options"] = "DENY"
        return response


app_settings = get_settings()

app = FastAPI(
    title="Whiteboard Versions API",
    description="Version history, rollback and comparison for whiteboard documents.",
    version="0.1.0",
)


# Most specific first; the first matching class wins
ERROR_STATUS_CODES: list[tuple[type[VersioningError], int]] = [
    (NotFoundError, 404),
    (VersionValidationError, 422),
    (InvalidStateError, 409),
    (OperationTimeoutError, 504),
    (CorruptHistoryError, 500),
    (CyclicHistoryError, 500),
    (PatchApplicationFailedError, 500),
    (TransactionFailedError, 500),
]


def _status_code_for(exc: VersioningError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(VersioningError)
async def versioning_exception_handler(
    _request: Request, exc: VersioningError,
) -> JSONResponse:
    """Map version engine errors to HTTP responses."""
    status_code = _status_code_for(exc)
    content: dict = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, CorruptHistoryError | CyclicHistoryError | PatchApplicationFailedError):
        if exc.version_id is not None:
            content["version_id"] = str(exc.version_id)
    if status_code >= 500:
        logger.error("Request failed: %s", exc)
    return JSONResponse(status_code=status_code, content=content)


# Security headers middleware (runs after CORS, adds headers to responses)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(versions.router)

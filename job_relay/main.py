import logging
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from job_relay.core.config import settings
from job_relay.core.exceptions import (
    CannotRecoverError,
    GenerationInProgressError,
    JobRelayError,
    MalformedCallbackError,
    NotFoundError,
    WebhookAuthError,
    WorkerClientError,
    WorkerNotConfiguredError,
)
from job_relay.routers import deliverables, ingestion, webhooks

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="job-relay", version="0.1.0")

# ---------------------------------------------------------------------------
# Middleware: request-id injection
# ---------------------------------------------------------------------------


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _error_response(request: Request, status_code: int, error: str, message: str, detail=None):
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "detail": detail,
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(
        request, 422, "validation_error", "Request validation failed", exc.errors()
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(request, exc.status_code, "http_error", str(exc.detail))


# Domain error -> (HTTP status, error code)
DOMAIN_ERRORS: dict[type[JobRelayError], tuple[int, str]] = {
    NotFoundError: (404, "not_found"),
    CannotRecoverError: (400, "cannot_recover"),
    MalformedCallbackError: (400, "malformed_callback"),
    WebhookAuthError: (401, "unauthorized"),
    GenerationInProgressError: (409, "generation_in_progress"),
    WorkerClientError: (502, "worker_error"),
    WorkerNotConfiguredError: (503, "worker_not_configured"),
}


@app.exception_handler(JobRelayError)
async def domain_error_handler(request: Request, exc: JobRelayError):
    for error_type, (status_code, code) in DOMAIN_ERRORS.items():
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.warning("%s: %s", code, exc, extra={"request_id": _request_id(request)})
            return _error_response(request, status_code, code, str(exc))
    return await general_exception_handler(request, exc)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", extra={"request_id": _request_id(request)})
    return _error_response(
        request,
        500,
        "internal_error",
        "An unexpected error occurred",
        str(exc) if settings.DEBUG else None,
    )


# ---------------------------------------------------------------------------
# Public endpoints (no auth)
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "job-relay", "version": "0.1.0"}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(webhooks.router)
app.include_router(ingestion.router)
app.include_router(deliverables.router)

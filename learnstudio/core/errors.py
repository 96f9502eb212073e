"""Error taxonomy and the response envelope handlers."""

import logging
from typing import Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from learnstudio.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class AuthorizationError(AppError):
    """Caller lacks the platform-admin role."""
    code = "forbidden"
    status_code = 403


class DuplicatePeriodError(ValidationError):
    """An invoice already exists for (org_id, period_start)."""
    code = "duplicate_period"


class InvalidTransitionError(ValidationError):
    """Invoice state machine forbids the requested transition."""
    code = "invalid_transition"


class UpstreamFailure(AppError):
    """Backing store or payments provider failed. Message is safe to show callers."""
    code = "upstream_failure"
    status_code = 500


class AdminAuditWriteError(AppError):
    code = "admin_audit_failed"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "success": False,
        "error": message,
        "code": code,
        "request_id": request_id,
    }


def _respond(status_code: int, payload: dict, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("learnstudio")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, payload, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("learnstudio")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, payload, rid)


async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed or missing request fields are a 400, not FastAPI's default 422."""
    rid = _extract_request_id(request)
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    logger = logging.getLogger("learnstudio")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400})
    return _respond(400, _error_payload("validation_error", message, rid), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("learnstudio")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Internal server error", rid)
    return _respond(500, payload, rid)

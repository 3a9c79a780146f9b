import logging
import uuid

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class ServiceError(Exception):
    """Domain failure carrying a stable code and a user-safe message.

    ``log_detail`` is for the server log only and is never rendered.
    """

    code = "service_error"
    status_code = 400
    message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        log_detail: str | None = None,
        details: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message or self.message
        self.log_detail = log_detail
        self.details = details
        self.headers = headers
        super().__init__(self.message)


# MFA


class InvalidCode(ServiceError):
    code = "invalid_code"
    status_code = 401
    message = "Invalid verification code"


class SecretNotFound(ServiceError):
    code = "secret_not_found"
    status_code = 404
    message = "Two-factor setup has not been started"


class InvalidCredentials(ServiceError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid credentials"


class RateLimited(ServiceError):
    code = "rate_limited"
    status_code = 429
    message = "Too many attempts, try again later"

    def __init__(self, retry_after: int, **kwargs):
        self.retry_after = max(1, int(retry_after))
        kwargs.setdefault("headers", {"Retry-After": str(self.retry_after)})
        kwargs.setdefault("details", {"retry_after": self.retry_after})
        super().__init__(**kwargs)


# Authorization


class DocumentNotFound(ServiceError):
    code = "not_found"
    status_code = 404
    message = "Document not found"


class NotApproved(ServiceError):
    code = "not_approved"
    status_code = 403
    message = "Document has not been approved"


class NotPublic(ServiceError):
    code = "not_public"
    status_code = 403
    message = "Public access is not allowed for this document"


# Documents


class CorruptSource(ServiceError):
    code = "corrupt_source"
    status_code = 422
    message = "The document could not be prepared for viewing"


class StorageUnavailable(ServiceError):
    code = "storage_unavailable"
    status_code = 502
    message = "The document store is unavailable"


# Viewing sessions


class SessionExpired(ServiceError):
    code = "session_expired"
    status_code = 410
    message = "Viewing session has ended, open the document again"


class SessionNotFound(ServiceError):
    code = "session_not_found"
    status_code = 404
    message = "Viewing session not found"


class SessionNotExtendable(ServiceError):
    code = "session_not_extendable"
    status_code = 409
    message = "Viewing session cannot be extended"


def _error_payload(code: str, message: str, details, correlation_id: str):
    return {
        "code": code,
        "message": message,
        "details": details,
        "correlation_id": correlation_id,
    }


def correlation_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    header_id = request.headers.get(REQUEST_ID_HEADER)
    if header_id:
        return header_id
    return str(uuid.uuid4())


def _respond(request: Request, status_code: int, code, message, details, headers=None):
    correlation_id = correlation_id_for(request)
    response_headers = {REQUEST_ID_HEADER: correlation_id}
    if headers:
        response_headers.update(headers)
    return JSONResponse(
        status_code=status_code,
        content=_error_payload(code, message, details, correlation_id),
        headers=response_headers,
    )


def error_response(request: Request, exc: ServiceError) -> JSONResponse:
    return _respond(
        request, exc.status_code, exc.code, exc.message, exc.details, exc.headers
    )


def register_error_handlers(app) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        logger.info(
            "Request %s %s failed with %s (%s)",
            request.method,
            request.url.path,
            exc.code,
            exc.log_detail or exc.message,
        )
        return error_response(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return _respond(
            request, exc.status_code, code, message, details, getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # exc.errors() ctx may contain raw Exception objects (not JSON-serialisable).
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items() if k != "url"}
            for err in exc.errors()
        ]
        return _respond(request, 422, "validation_error", "Validation error", errors)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error on %s %s", request.method, request.url.path
        )
        return _respond(request, 500, "internal_error", "Internal server error", None)

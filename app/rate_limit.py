"""Per-client request throttling.

Every API route shares one budget per client address
(``API_RATE_LIMIT``, 200 requests per 15 minutes by default). Health and
metrics endpoints are exempt. Failed two-factor attempts are limited
separately by :mod:`app.services.attempts`.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.config import settings
from app.errors import RateLimited, error_response

logger = logging.getLogger(__name__)


def build_limiter(
    limit: str | None = None,
    enabled: bool | None = None,
    storage_uri: str | None = None,
) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        application_limits=[limit or settings.api_rate_limit],
        storage_uri=storage_uri or settings.rate_limit_storage_uri,
        strategy="fixed-window",
        headers_enabled=True,
        enabled=settings.api_rate_limit_enabled if enabled is None else enabled,
    )


limiter = build_limiter()


def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    # sync: SlowAPIMiddleware returns the handler's result without awaiting it
    logger.warning(
        "Throttled %s %s for %s: %s",
        request.method,
        request.url.path,
        get_remote_address(request),
        exc.detail,
    )
    error = RateLimited(
        exc.limit.limit.get_expiry(), message="Too many requests, slow down"
    )
    response = error_response(request, error)
    current_limit = getattr(request.state, "view_rate_limit", None)
    if current_limit is not None:
        response = request.app.state.limiter._inject_headers(response, current_limit)
    return response

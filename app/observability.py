import logging
import uuid
from time import perf_counter

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.errors import REQUEST_ID_HEADER
from app.logging import request_id_var

logger = logging.getLogger(__name__)

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests",
    ["method", "route", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
)

MFA_VERIFICATIONS = Counter(
    "mfa_verifications_total",
    "Two-factor code checks",
    ["flow", "method", "outcome"],
)
DOCUMENT_DELIVERIES = Counter(
    "secure_document_deliveries_total",
    "Secure document view requests",
    ["outcome"],
)
SECURITY_EVENTS = Counter(
    "viewer_security_events_total",
    "Security events reported by the secure viewer",
    ["type", "severity"],
)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER, "")
        if not request_id or len(request_id) > 128 or not request_id.isprintable():
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        start = perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            return response
        finally:
            elapsed = perf_counter() - start
            route = _route_label(request)
            REQUEST_COUNT.labels(request.method, route, str(status)).inc()
            REQUEST_LATENCY.labels(request.method, route).observe(elapsed)
            request_id_var.reset(token)

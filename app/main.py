from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.responses import Response

from app.api.auth_flow import router as auth_flow_router
from app.api.mfa import router as mfa_router
from app.api.secure_documents import router as secure_documents_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware
from app.rate_limit import limiter, rate_limit_exceeded_handler
from app.services.delivery import DeliveryService
from app.services.mfa import build_mfa_service
from app.services.origins import OriginPolicy
from app.services.security_events import SecurityTelemetry
from app.services.viewing_session import SessionLedger


def install_services(app: FastAPI) -> None:
    ledger = SessionLedger()
    app.state.ledger = ledger
    app.state.telemetry = SecurityTelemetry(ledger)
    app.state.mfa = build_mfa_service()
    app.state.delivery = DeliveryService(ledger, OriginPolicy())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    app.state.ledger.shutdown()


app = FastAPI(title="Secure Library API", lifespan=lifespan)

configure_logging()
install_services(app)
app.state.limiter = limiter
# last added runs first: requests are tagged before they are throttled
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


def _include_api_router(router, dependencies=None):
    app.include_router(router, dependencies=dependencies)
    app.include_router(router, prefix="/api/v1", dependencies=dependencies)


_include_api_router(auth_flow_router)
_include_api_router(mfa_router)
_include_api_router(secure_documents_router)


@app.get("/health")
@limiter.exempt
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
@limiter.exempt
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

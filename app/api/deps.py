from fastapi import Request

from app.services.auth_dependencies import (
    AuthContext,
    require_role,
    require_user_auth,
)
from app.db import get_db
from app.services.delivery import DeliveryService
from app.services.mfa import MfaService
from app.services.security_events import SecurityTelemetry
from app.services.viewing_session import SessionLedger


def get_ledger(request: Request) -> SessionLedger:
    return request.app.state.ledger


def get_telemetry(request: Request) -> SecurityTelemetry:
    return request.app.state.telemetry


def get_mfa_service(request: Request) -> MfaService:
    return request.app.state.mfa


def get_delivery_service(request: Request) -> DeliveryService:
    return request.app.state.delivery


__all__ = [
    "AuthContext",
    "get_db",
    "get_delivery_service",
    "get_ledger",
    "get_mfa_service",
    "get_telemetry",
    "require_role",
    "require_user_auth",
]

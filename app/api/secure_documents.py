from fastapi import APIRouter, Depends, Header, Request, Response, status
from sqlalchemy.orm import Session

from app.api.deps import (
    AuthContext,
    get_db,
    get_delivery_service,
    get_ledger,
    get_telemetry,
    require_role,
    require_user_auth,
)
from app.errors import SessionNotFound
from app.models.identity import PrincipalRole
from app.schemas.viewing import (
    ExtendRequest,
    SecurityEventAck,
    SecurityEventCreate,
    SecuritySnapshotRead,
    ViewingSessionRead,
)
from app.services.delivery import DeliveryService, preflight_headers
from app.services.registry import DocumentRegistry
from app.services.security_events import SecurityTelemetry
from app.services.viewing_session import SessionLedger, SessionStatus

router = APIRouter(tags=["secure-documents"])

require_viewer = require_role(*(role.value for role in PrincipalRole))


def _session_read(session_status: SessionStatus) -> ViewingSessionRead:
    return ViewingSessionRead(
        session_id=session_status.session_id,
        document_id=session_status.document_id,
        state=session_status.state.value,
        remaining_seconds=session_status.remaining_seconds,
        max_duration_seconds=session_status.max_duration_seconds,
        extendable=session_status.extendable,
        extensions_used=session_status.extensions_used,
        warn_threshold_seconds=session_status.warn_threshold_seconds,
        started_at=session_status.started_at,
    )


# ------------------------------------------------------------------
# Stamped document delivery
# ------------------------------------------------------------------


@router.get("/secure-documents/{document_id}/view")
def view_document(
    document_id: str,
    origin: str | None = Header(default=None),
    auth: AuthContext = Depends(require_viewer),
    db: Session = Depends(get_db),
    delivery: DeliveryService = Depends(get_delivery_service),
):
    result = delivery.deliver(DocumentRegistry(db), auth.principal, document_id, origin)
    return Response(
        content=result.content, media_type=result.media_type, headers=result.headers
    )


@router.options("/secure-documents/{document_id}/view")
def view_document_preflight(
    document_id: str,
    request: Request,
    delivery: DeliveryService = Depends(get_delivery_service),
):
    origin = request.headers.get("origin")
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers=preflight_headers(delivery.origin_policy, origin),
    )


# ------------------------------------------------------------------
# Viewing sessions
# ------------------------------------------------------------------


@router.get("/viewing-sessions/{session_id}", response_model=ViewingSessionRead)
def get_viewing_session(
    session_id: str,
    auth: AuthContext = Depends(require_user_auth),
    ledger: SessionLedger = Depends(get_ledger),
):
    ledger.require_readable(session_id, auth.principal.id)
    return _session_read(ledger.status(session_id))


@router.post(
    "/viewing-sessions/{session_id}/extend", response_model=ViewingSessionRead
)
def extend_viewing_session(
    session_id: str,
    payload: ExtendRequest,
    auth: AuthContext = Depends(require_user_auth),
    ledger: SessionLedger = Depends(get_ledger),
):
    return _session_read(ledger.extend(session_id, payload.seconds, auth.principal.id))


@router.post(
    "/viewing-sessions/{session_id}/leave", status_code=status.HTTP_204_NO_CONTENT
)
def leave_viewing_session(
    session_id: str,
    auth: AuthContext = Depends(require_user_auth),
    ledger: SessionLedger = Depends(get_ledger),
):
    ledger.terminate(session_id, auth.principal.id)


# ------------------------------------------------------------------
# Security telemetry
# ------------------------------------------------------------------


@router.post(
    "/viewing-sessions/{session_id}/events",
    response_model=SecurityEventAck,
    status_code=status.HTTP_202_ACCEPTED,
)
def record_security_event(
    session_id: str,
    payload: SecurityEventCreate,
    auth: AuthContext = Depends(require_user_auth),
    telemetry: SecurityTelemetry = Depends(get_telemetry),
):
    ack = telemetry.record(session_id, payload.type, principal_id=auth.principal.id)
    return SecurityEventAck(
        session_id=ack.session_id,
        sequence=ack.sequence,
        severity=ack.severity.value,
        recorded_at=ack.recorded_at,
    )


@router.get(
    "/viewing-sessions/{session_id}/security-events",
    response_model=SecuritySnapshotRead,
)
def get_security_events(
    session_id: str,
    auth: AuthContext = Depends(require_viewer),
    ledger: SessionLedger = Depends(get_ledger),
    telemetry: SecurityTelemetry = Depends(get_telemetry),
):
    if auth.principal.role != PrincipalRole.admin:
        with ledger.locked(session_id) as session:
            owner_id = session.principal_id
        if owner_id != str(auth.principal.id):
            raise SessionNotFound()
    snapshot = telemetry.snapshot(session_id)
    return {
        "session_id": snapshot.session_id,
        "events": [
            {
                "type": event.type.value,
                "severity": event.severity.value,
                "timestamp": event.timestamp,
                "sequence": event.sequence,
            }
            for event in snapshot.events
        ],
        "counts_by_severity": snapshot.counts_by_severity,
    }

import logging
from dataclasses import dataclass

from app.errors import ServiceError
from app.models.identity import Principal
from app.observability import DOCUMENT_DELIVERIES
from app.services import access, watermark
from app.services.origins import OriginPolicy
from app.services.registry import DocumentRegistry
from app.services.viewing_session import SessionLedger, ViewingSession

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
SESSION_HEADERS = (
    "X-Viewer-Session-Id",
    "X-Viewer-Max-Duration",
    "X-Viewer-Extendable",
    "X-Viewer-Warn-Threshold",
)

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: blob:; font-src 'self' data:; object-src 'self'; "
    "frame-ancestors {frame_ancestors};"
)


@dataclass(frozen=True)
class SecureDelivery:
    content: bytes
    headers: dict[str, str]
    session: ViewingSession
    media_type: str = PDF_MEDIA_TYPE


def cors_headers(policy: OriginPolicy, origin: str | None) -> dict[str, str]:
    headers = {"Vary": "Origin"}
    if policy.is_allowed(origin):
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def preflight_headers(policy: OriginPolicy, origin: str | None) -> dict[str, str]:
    headers = cors_headers(policy, origin)
    if "Access-Control-Allow-Origin" in headers:
        headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        headers["Access-Control-Max-Age"] = "600"
    return headers


def response_headers(
    policy: OriginPolicy,
    origin: str | None,
    session: ViewingSession,
    warn_threshold_seconds: int,
) -> dict[str, str]:
    headers = {
        "Content-Disposition": 'inline; filename="document.pdf"',
        "Cache-Control": "no-store, no-cache, must-revalidate, private",
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Content-Security-Policy": CONTENT_SECURITY_POLICY.format(
            frame_ancestors=policy.frame_ancestors(origin)
        ),
        "X-Viewer-Session-Id": session.session_id,
        "X-Viewer-Max-Duration": str(session.max_duration_seconds),
        "X-Viewer-Extendable": "true" if session.extendable else "false",
        "X-Viewer-Warn-Threshold": str(warn_threshold_seconds),
    }
    cors = cors_headers(policy, origin)
    if "Access-Control-Allow-Origin" in cors:
        cors["Access-Control-Expose-Headers"] = ", ".join(SESSION_HEADERS)
    headers.update(cors)
    return headers


class DeliveryService:
    def __init__(self, ledger: SessionLedger, origin_policy: OriginPolicy) -> None:
        self.ledger = ledger
        self.origin_policy = origin_policy

    def deliver(
        self,
        registry: DocumentRegistry,
        principal: Principal,
        document_id,
        origin: str | None = None,
    ) -> SecureDelivery:
        """Authorize, open a viewing session and stamp a fresh copy.

        The session is discarded if anything fails after it was opened, so a
        failed request leaves neither bytes nor a dangling session behind.
        """
        try:
            meta = access.enforce(registry, principal, document_id)
            source = registry.get_bytes(meta)
        except ServiceError as e:
            DOCUMENT_DELIVERIES.labels(e.code).inc()
            raise

        session = self.ledger.start(principal.id, meta.id)
        try:
            content = watermark.stamp(source, principal, session)
        except Exception as e:
            self.ledger.terminate(session.session_id)
            self.ledger.discard(session.session_id)
            DOCUMENT_DELIVERIES.labels(getattr(e, "code", "error")).inc()
            raise

        DOCUMENT_DELIVERIES.labels("delivered").inc()
        logger.info(
            "Delivered document %s to principal %s in session %s",
            meta.id,
            principal.id,
            session.session_id,
        )
        headers = response_headers(
            self.origin_policy, origin, session, self.ledger.warn_threshold_seconds
        )
        return SecureDelivery(content=content, headers=headers, session=session)

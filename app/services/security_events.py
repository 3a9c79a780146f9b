import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from app.errors import SessionNotFound
from app.observability import SECURITY_EVENTS
from app.services.viewing_session import SessionLedger

logger = logging.getLogger(__name__)


class SecurityEventType(enum.Enum):
    copy = "copy"
    print = "print"
    save = "save"
    devtools = "devtools"
    context_menu = "context_menu"
    tab_switch = "tab_switch"
    screenshot = "screenshot"


class Severity(enum.Enum):
    high = "high"
    medium = "medium"
    low = "low"


SEVERITY_BY_TYPE = {
    SecurityEventType.devtools: Severity.high,
    SecurityEventType.screenshot: Severity.high,
    SecurityEventType.copy: Severity.medium,
    SecurityEventType.print: Severity.medium,
    SecurityEventType.save: Severity.medium,
    SecurityEventType.context_menu: Severity.low,
    SecurityEventType.tab_switch: Severity.low,
}


@dataclass(frozen=True)
class SecurityEvent:
    type: SecurityEventType
    severity: Severity
    timestamp: datetime
    sequence: int


@dataclass(frozen=True)
class EventAck:
    session_id: str
    sequence: int
    severity: Severity
    recorded_at: datetime


@dataclass(frozen=True)
class TelemetrySnapshot:
    session_id: str
    events: tuple[SecurityEvent, ...]
    counts_by_severity: dict[str, int]


def severity_for(event_type: SecurityEventType) -> Severity:
    return SEVERITY_BY_TYPE[event_type]


class SecurityTelemetry:
    """Append-only security event log kept on each viewing session."""

    def __init__(self, ledger: SessionLedger) -> None:
        self.ledger = ledger

    def record(
        self, session_id: str, event_type: SecurityEventType | str, principal_id=None
    ) -> EventAck:
        event_type = SecurityEventType(event_type)
        severity = severity_for(event_type)
        with self.ledger.locked(session_id) as session:
            if principal_id is not None and session.principal_id != str(principal_id):
                raise SessionNotFound()
            event = SecurityEvent(
                type=event_type,
                severity=severity,
                timestamp=datetime.now(timezone.utc),
                sequence=len(session.security_events) + 1,
            )
            session.security_events.append(event)
            session.severity_counts[severity.value] += 1

        SECURITY_EVENTS.labels(event_type.value, severity.value).inc()
        if severity == Severity.high:
            logger.warning(
                "High severity %s event on viewing session %s",
                event_type.value,
                session_id,
            )
        else:
            logger.info(
                "%s event (%s) on viewing session %s",
                event_type.value,
                severity.value,
                session_id,
            )
        return EventAck(
            session_id=session_id,
            sequence=event.sequence,
            severity=severity,
            recorded_at=event.timestamp,
        )

    def snapshot(self, session_id: str) -> TelemetrySnapshot:
        with self.ledger.locked(session_id) as session:
            events = tuple(session.security_events)
            counts = {s.value: session.severity_counts.get(s.value, 0) for s in Severity}
        return TelemetrySnapshot(
            session_id=session_id, events=events, counts_by_severity=counts
        )

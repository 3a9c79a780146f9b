"""In-memory ledger of bounded-lifetime document viewing sessions.

A session is ``active`` until its remaining time drops to the warning
threshold, ``warning`` until it reaches zero, then ``expired``. A client
"leave" moves it straight to ``terminated``. Ended sessions are kept as
tombstones for a short while so late reads get a clear
:class:`SessionExpired` rather than a not-found, then they are discarded
together with their security events.

Each live session owns one cancellable background timer that fires the
expiry. Mutations of a session happen under that session's own lock.
"""

from __future__ import annotations

import enum
import logging
import math
import secrets
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import HTTPException

from app.config import settings
from app.errors import SessionExpired, SessionNotExtendable, SessionNotFound
from app.services.locks import KeyedLocks

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("app.audit.security")


class SessionState(enum.Enum):
    active = "active"
    warning = "warning"
    expired = "expired"
    terminated = "terminated"


LIVE_STATES = frozenset({SessionState.active, SessionState.warning})


@dataclass
class ViewingSession:
    session_id: str
    principal_id: str
    document_id: str
    started_at: datetime
    max_duration_seconds: int
    extendable: bool
    started_clock: float
    extra_seconds: int = 0
    extensions_used: int = 0
    state: SessionState = SessionState.active
    ended_clock: float | None = None
    security_events: list = field(default_factory=list)
    severity_counts: Counter = field(default_factory=Counter)

    @property
    def deadline_clock(self) -> float:
        return self.started_clock + self.max_duration_seconds + self.extra_seconds

    @property
    def is_live(self) -> bool:
        return self.state in LIVE_STATES


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    document_id: str
    state: SessionState
    remaining_seconds: int
    max_duration_seconds: int
    extendable: bool
    extensions_used: int
    warn_threshold_seconds: int
    started_at: datetime


def _new_session_id() -> str:
    return secrets.token_urlsafe(16)


class SessionLedger:
    def __init__(
        self,
        max_duration_seconds: int = settings.viewer_max_duration_seconds,
        warn_threshold_seconds: int = settings.viewer_warn_threshold_seconds,
        extendable: bool = settings.viewer_extendable,
        max_extensions: int | None = settings.viewer_max_extensions,
        max_extension_seconds: int = settings.viewer_max_extension_seconds,
        tombstone_seconds: int = settings.viewer_tombstone_seconds,
        audit_enabled: bool = settings.security_audit_log_enabled,
        clock: Callable[[], float] = time.monotonic,
        use_timers: bool = True,
    ) -> None:
        self.max_duration_seconds = max_duration_seconds
        self.warn_threshold_seconds = warn_threshold_seconds
        self.extendable = extendable
        self.max_extensions = max_extensions
        self.max_extension_seconds = max_extension_seconds
        self.tombstone_seconds = tombstone_seconds
        self.audit_enabled = audit_enabled
        self._clock = clock
        self._use_timers = use_timers
        self._locks = KeyedLocks()
        self._registry_lock = threading.Lock()
        self._sessions: dict[str, ViewingSession] = {}
        self._timers: dict[str, threading.Timer] = {}

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_timer(self, session: ViewingSession) -> None:
        if not self._use_timers:
            return
        self._cancel_timer(session.session_id)
        delay = max(0.0, session.deadline_clock - self._clock())
        timer = threading.Timer(delay, self._on_deadline, args=(session.session_id,))
        timer.daemon = True
        with self._registry_lock:
            self._timers[session.session_id] = timer
        timer.start()

    def _cancel_timer(self, session_id: str) -> None:
        with self._registry_lock:
            timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()

    def _on_deadline(self, session_id: str) -> None:
        try:
            if self.tick(session_id) in LIVE_STATES:
                # fired a hair early or the session was extended meanwhile
                self._arm_timer(self._lookup(session_id))
        except SessionNotFound:
            return

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _lookup(self, session_id: str) -> ViewingSession:
        with self._registry_lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound()
        return session

    @contextmanager
    def locked(self, session_id: str) -> Iterator[ViewingSession]:
        """Yield the session with its lock held and its state refreshed."""
        with self._locks.hold(session_id):
            session = self._lookup(session_id)
            self._refresh(session)
            yield session

    def _remaining(self, session: ViewingSession) -> float:
        if not session.is_live:
            return 0.0
        return max(0.0, session.deadline_clock - self._clock())

    def _refresh(self, session: ViewingSession) -> None:
        if not session.is_live:
            return
        remaining = session.deadline_clock - self._clock()
        if remaining <= 0:
            session.state = SessionState.expired
            session.ended_clock = session.deadline_clock
            logger.info("Viewing session %s expired", session.session_id)
        elif remaining <= self.warn_threshold_seconds:
            session.state = SessionState.warning
        else:
            session.state = SessionState.active

    def _status(self, session: ViewingSession) -> SessionStatus:
        return SessionStatus(
            session_id=session.session_id,
            document_id=session.document_id,
            state=session.state,
            remaining_seconds=math.ceil(self._remaining(session)),
            max_duration_seconds=session.max_duration_seconds,
            extendable=session.extendable,
            extensions_used=session.extensions_used,
            warn_threshold_seconds=self.warn_threshold_seconds,
            started_at=session.started_at,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(
        self,
        principal_id,
        document_id,
        max_duration_seconds: int | None = None,
        extendable: bool | None = None,
    ) -> ViewingSession:
        self.purge()
        duration = (
            self.max_duration_seconds
            if max_duration_seconds is None
            else max_duration_seconds
        )
        if duration <= 0:
            raise ValueError("max_duration_seconds must be positive")
        session = ViewingSession(
            session_id=_new_session_id(),
            principal_id=str(principal_id),
            document_id=str(document_id),
            started_at=datetime.now(timezone.utc),
            max_duration_seconds=duration,
            extendable=self.extendable if extendable is None else extendable,
            started_clock=self._clock(),
        )
        self._refresh(session)
        with self._registry_lock:
            self._sessions[session.session_id] = session
        self._arm_timer(session)
        logger.info(
            "Opened viewing session %s for principal %s on document %s (%ss)",
            session.session_id,
            session.principal_id,
            session.document_id,
            duration,
        )
        return session

    def tick(self, session_id: str) -> SessionState:
        with self.locked(session_id) as session:
            state = session.state
        if state not in LIVE_STATES:
            self._cancel_timer(session_id)
        return state

    def status(self, session_id: str) -> SessionStatus:
        with self.locked(session_id) as session:
            return self._status(session)

    def remaining(self, session_id: str) -> int:
        return self.status(session_id).remaining_seconds

    def require_readable(self, session_id: str, principal_id=None) -> ViewingSession:
        with self.locked(session_id) as session:
            if principal_id is not None and session.principal_id != str(principal_id):
                raise SessionNotFound()
            if not session.is_live:
                raise SessionExpired()
            return session

    def extend(self, session_id: str, seconds: int, principal_id=None) -> SessionStatus:
        if seconds <= 0 or seconds > self.max_extension_seconds:
            raise HTTPException(
                status_code=400,
                detail=f"Extension must be between 1 and {self.max_extension_seconds} seconds",
            )
        with self.locked(session_id) as session:
            if principal_id is not None and session.principal_id != str(principal_id):
                raise SessionNotFound()
            if not session.is_live:
                raise SessionExpired()
            if not session.extendable:
                raise SessionNotExtendable()
            if (
                self.max_extensions is not None
                and session.extensions_used >= self.max_extensions
            ):
                raise SessionNotExtendable("Viewing session extension limit reached")
            session.extra_seconds += seconds
            session.extensions_used += 1
            self._refresh(session)
            status = self._status(session)
        self._arm_timer(session)
        logger.info("Extended viewing session %s by %ss", session_id, seconds)
        return status

    def terminate(self, session_id: str, principal_id=None) -> None:
        with self.locked(session_id) as session:
            if principal_id is not None and session.principal_id != str(principal_id):
                raise SessionNotFound()
            if session.is_live:
                session.state = SessionState.terminated
                session.ended_clock = self._clock()
                logger.info("Viewing session %s terminated by client", session_id)
        self._cancel_timer(session_id)

    def discard(self, session_id: str) -> None:
        self._cancel_timer(session_id)
        with self._locks.hold(session_id):
            with self._registry_lock:
                session = self._sessions.pop(session_id, None)
        if session is not None:
            self._audit(session)

    def purge(self) -> int:
        """Discard ended sessions whose tombstone period has elapsed."""
        now = self._clock()
        with self._registry_lock:
            candidates = list(self._sessions.values())
        stale = []
        for session in candidates:
            with self._locks.hold(session.session_id):
                self._refresh(session)
                if (
                    session.ended_clock is not None
                    and now - session.ended_clock >= self.tombstone_seconds
                ):
                    stale.append(session.session_id)
        for session_id in stale:
            self.discard(session_id)
        return len(stale)

    def shutdown(self) -> None:
        with self._registry_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def active_timers(self) -> int:
        with self._registry_lock:
            return len(self._timers)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    def _audit(self, session: ViewingSession) -> None:
        if not self.audit_enabled:
            return
        audit_logger.info(
            "viewing_session=%s principal=%s document=%s state=%s events=%d "
            "high=%d medium=%d low=%d",
            session.session_id,
            session.principal_id,
            session.document_id,
            session.state.value,
            len(session.security_events),
            session.severity_counts.get("high", 0),
            session.severity_counts.get("medium", 0),
            session.severity_counts.get("low", 0),
        )

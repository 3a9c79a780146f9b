from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from app.services.security_events import SecurityEventType


class ViewingSessionRead(BaseModel):
    session_id: str
    document_id: str
    state: str
    remaining_seconds: int
    max_duration_seconds: int
    extendable: bool
    extensions_used: int
    warn_threshold_seconds: int
    started_at: datetime


class ExtendRequest(BaseModel):
    seconds: int = Field(gt=0)


class SecurityEventCreate(BaseModel):
    type: SecurityEventType


class SecurityEventAck(BaseModel):
    session_id: str
    sequence: int
    severity: str
    recorded_at: datetime


class SecurityEventRead(BaseModel):
    type: str
    severity: str
    timestamp: datetime
    sequence: int


class SecuritySnapshotRead(BaseModel):
    session_id: str
    events: list[SecurityEventRead]
    counts_by_severity: dict[str, int]

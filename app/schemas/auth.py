from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=256)


class PrincipalRead(BaseModel):
    id: UUID
    email: str
    role: str
    first_name: str
    last_name: str


class LoginResponse(BaseModel):
    mfa_required: bool = False
    access_token: str | None = None
    token_type: str = "bearer"
    mfa_token: str | None = None
    method: str | None = None
    principal: PrincipalRead | None = None


class MfaLoginRequest(BaseModel):
    mfa_token: str = Field(min_length=1)
    code: str = Field(min_length=1, max_length=16)
    method: Literal["app", "sms"] | None = None


class SmsChallengeRequest(BaseModel):
    mfa_token: str = Field(min_length=1)

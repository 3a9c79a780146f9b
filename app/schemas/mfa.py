from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class MfaSetupRequest(BaseModel):
    method: Literal["app", "sms"] = "app"
    phone_number: str | None = Field(default=None, max_length=40)


class MfaSetupResponse(BaseModel):
    method: str
    secret: str | None = None
    otpauth_url: str | None = None
    qr_code: str | None = None
    phone: str | None = None


class MfaCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class MfaDisableRequest(BaseModel):
    password: str = Field(min_length=1, max_length=256)


class MfaStatusRead(BaseModel):
    enabled: bool
    method: str | None = None
    phone: str | None = None

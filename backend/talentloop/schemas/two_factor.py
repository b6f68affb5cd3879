# backend/talentloop/schemas/two_factor.py
from __future__ import annotations

from pydantic import Field

from talentloop.schemas.base import CamelModel


class TwoFactorTokenRequest(CamelModel):
    # 6-digit TOTP or an 8-char backup code
    token: str = Field(min_length=6, max_length=16)


class TwoFactorSetupResponse(CamelModel):
    secret: str
    qr_code: str
    otpauth_url: str


class TwoFactorEnableResponse(CamelModel):
    success: bool
    backup_codes: list[str]
    message: str


class BackupCodesResponse(CamelModel):
    backup_codes: list[str]
    message: str


class TwoFactorStatusResponse(CamelModel):
    two_factor_enabled: bool

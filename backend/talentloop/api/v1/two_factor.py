# backend/talentloop/api/v1/two_factor.py
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.v1.auth import get_current_user
from talentloop.core import notifications
from talentloop.core.logging import get_logger
from talentloop.core.two_factor import (
    build_otpauth_url,
    generate_backup_codes,
    generate_secret,
    render_qr_data_url,
    verify_totp,
    verify_user_token,
)
from talentloop.db.session import get_db
from talentloop.models.user import User
from talentloop.schemas.auth import MessageResponse
from talentloop.schemas.two_factor import (
    BackupCodesResponse,
    TwoFactorEnableResponse,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorTokenRequest,
)

router = APIRouter(prefix="/auth/2fa", tags=["two-factor"])

logger = get_logger(__name__)


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


@router.get("/generate", response_model=TwoFactorSetupResponse)
async def generate(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TwoFactorSetupResponse:
    """
    Step 1 of enrollment: a fresh secret the user scans into an authenticator app.
    """
    if user.two_factor_enabled:
        raise _bad_request("Two-factor authentication is already enabled")

    secret = generate_secret()
    user.two_factor_secret = secret
    await db.commit()

    otpauth_url = build_otpauth_url(secret, account_name=user.email)
    return TwoFactorSetupResponse(
        secret=secret,
        qr_code=render_qr_data_url(otpauth_url),
        otpauth_url=otpauth_url,
    )


@router.post("/enable", response_model=TwoFactorEnableResponse)
async def enable(
    payload: TwoFactorTokenRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> TwoFactorEnableResponse:
    """
    Step 2: confirm a TOTP code from the app; returns one-time backup codes.
    """
    if user.two_factor_enabled:
        raise _bad_request("Two-factor authentication is already enabled")
    if not user.two_factor_secret:
        raise _bad_request("Generate a two-factor secret first")
    if not verify_totp(user.two_factor_secret, payload.token):
        raise _bad_request("Invalid two-factor code")

    codes = generate_backup_codes()
    user.two_factor_enabled = True
    user.two_factor_backup_codes = codes
    await db.commit()

    logger.info("two_factor_enabled", user_id=str(user.id))
    await notifications.send_two_factor_enabled_email(
        to_email=user.email, user_name=user.name, backup_codes_count=len(codes)
    )
    return TwoFactorEnableResponse(
        success=True,
        backup_codes=codes,
        message="Two-factor authentication enabled. Store your backup codes somewhere safe.",
    )


@router.delete("/disable", response_model=MessageResponse)
async def disable(
    payload: TwoFactorTokenRequest = Body(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> MessageResponse:
    if not user.two_factor_enabled:
        raise _bad_request("Two-factor authentication is not enabled")
    if not verify_user_token(user, payload.token):
        raise _bad_request("Invalid two-factor code")

    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.two_factor_backup_codes = []
    await db.commit()

    logger.info("two_factor_disabled", user_id=str(user.id))
    await notifications.send_two_factor_disabled_email(to_email=user.email, user_name=user.name)
    return MessageResponse(message="Two-factor authentication disabled")


@router.post("/regenerate-backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    payload: TwoFactorTokenRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> BackupCodesResponse:
    if not user.two_factor_enabled:
        raise _bad_request("Two-factor authentication is not enabled")
    if not verify_user_token(user, payload.token):
        raise _bad_request("Invalid two-factor code")

    codes = generate_backup_codes()
    user.two_factor_backup_codes = codes
    await db.commit()

    logger.info("two_factor_backup_codes_regenerated", user_id=str(user.id))
    return BackupCodesResponse(backup_codes=codes, message="New backup codes generated. The old ones no longer work.")


@router.get("/status", response_model=TwoFactorStatusResponse)
async def two_factor_status(user: User = Depends(get_current_user)) -> TwoFactorStatusResponse:
    return TwoFactorStatusResponse(two_factor_enabled=bool(user.two_factor_enabled))

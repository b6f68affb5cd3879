# talentloop/core/two_factor.py
from __future__ import annotations

import base64
import io
import secrets
from typing import Optional

import pyotp
import qrcode

from talentloop.core.config import settings

TOTP_STEP_SECONDS = 30
TOTP_VALID_WINDOW = 1
BACKUP_CODE_COUNT = 8
BACKUP_CODE_BYTES = 4


def generate_secret() -> str:
    return pyotp.random_base32()


def build_otpauth_url(secret: str, account_name: str, issuer: Optional[str] = None) -> str:
    totp = pyotp.TOTP(secret, interval=TOTP_STEP_SECONDS)
    return totp.provisioning_uri(name=account_name, issuer_name=issuer or settings.TWO_FACTOR_ISSUER)


def render_qr_data_url(data: str) -> str:
    """
    PNG QR code as a data URL, ready for an <img src>.
    """
    img = qrcode.make(data)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def verify_totp(secret: Optional[str], token: Optional[str]) -> bool:
    if not secret or not token:
        return False
    code = token.strip().replace(" ", "")
    if not code.isdigit():
        return False
    totp = pyotp.TOTP(secret, interval=TOTP_STEP_SECONDS)
    return totp.verify(code, valid_window=TOTP_VALID_WINDOW)


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(count)]


def match_backup_code(codes: list[str] | None, token: Optional[str]) -> Optional[str]:
    """
    Returns the stored code matched by token (case-insensitive), or None.
    """
    if not codes or not token:
        return None
    candidate = token.strip().upper().encode("utf-8")
    for code in codes:
        if secrets.compare_digest(code.upper().encode("utf-8"), candidate):
            return code
    return None


def verify_user_token(user, token: Optional[str]) -> bool:
    """
    Accept a backup code (consumed on use) or a TOTP code for user.
    The caller commits the consumed backup code.
    """
    matched = match_backup_code(user.two_factor_backup_codes, token)
    if matched is not None:
        user.two_factor_backup_codes = [c for c in user.two_factor_backup_codes if c != matched]
        return True
    return verify_totp(user.two_factor_secret, token)

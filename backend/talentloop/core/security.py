from __future__ import annotations

import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from talentloop.core.config import settings

bearer_scheme = HTTPBearer(auto_error=True)

BCRYPT_ROUNDS = 10

PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 20
# bcrypt rejects longer inputs
PASSWORD_MAX_BYTES = 72
TEMP_PASSWORD_LENGTH = 12
TEMP_PASSWORD_SPECIALS = "!@#$%&*"

_UPPER_RE = re.compile(r"[A-Z]")
_LOWER_RE = re.compile(r"[a-z]")
_DIGIT_RE = re.compile(r"[0-9]")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9]")


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash stored in DB
        return False


def password_policy_errors(password: str) -> list[str]:
    """
    Returns the list of unmet password rules (empty when the password is acceptable).
    """
    errors: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH or len(password) > PASSWORD_MAX_LENGTH:
        errors.append(f"must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        errors.append(f"must be at most {PASSWORD_MAX_BYTES} bytes long")
    if not _UPPER_RE.search(password):
        errors.append("must contain an uppercase letter")
    if not _LOWER_RE.search(password):
        errors.append("must contain a lowercase letter")
    if not _DIGIT_RE.search(password):
        errors.append("must contain a digit")
    if not _SPECIAL_RE.search(password):
        errors.append("must contain a special character")
    return errors


def generate_temporary_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    """
    Random password that always satisfies the password policy.
    """
    alphabet = string.ascii_letters + string.digits + TEMP_PASSWORD_SPECIALS
    chars = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(TEMP_PASSWORD_SPECIALS),
    ]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


# ---------------------------------------------------------
# JWT
# ---------------------------------------------------------
def _normalize_token(token: str) -> str:
    """
    Make token decoding resilient to common Swagger / copy-paste issues:
    - Leading/trailing whitespace/newlines
    - Surrounding quotes
    - Accidentally including the 'Bearer ' prefix in the token field
    """
    if token is None:
        return ""

    t = token.strip()

    if (t.startswith('"') and t.endswith('"')) or (t.startswith("'") and t.endswith("'")):
        t = t[1:-1].strip()

    if t.lower().startswith("bearer "):
        t = t[7:].strip()

    return t


def create_access_token(
    subject: str,
    claims: Optional[dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    claims carries the tenant context: email, tenantId, tenantSlug, tenantType.
    """
    now = datetime.now(timezone.utc)
    expire_dt = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = dict(claims or {})
    to_encode.update(
        {
            "sub": str(subject),
            "exp": int(expire_dt.timestamp()),
            "iat": int(now.timestamp()),
        }
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    token = _normalize_token(token)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        # expired, bad signature, wrong algorithm, malformed...
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload


def generate_url_token(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)

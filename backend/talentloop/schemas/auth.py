# backend/talentloop/schemas/auth.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator

from talentloop.core.enums import CANDIDATES_TENANT_SLUG
from talentloop.core.security import password_policy_errors
from talentloop.schemas.base import CamelModel


def _check_password(value: str) -> str:
    errors = password_policy_errors(value)
    if errors:
        raise ValueError("Password " + "; ".join(errors))
    return value


def _normalize_name(value: str) -> str:
    v = " ".join(value.strip().split())
    if not v:
        raise ValueError("must not be blank")
    return v


# ---------------------------------------------------------
# Signup
# ---------------------------------------------------------
class CandidateSignupRequest(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    plan: str = Field(default="FREE", min_length=1, max_length=50)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _normalize_name(v)


class CompanySignupRequest(CamelModel):
    company_name: str = Field(min_length=1, max_length=200)
    contact_name: str = Field(min_length=1, max_length=200)
    contact_email: EmailStr
    domain: str = Field(min_length=2, max_length=100)
    plan: str = Field(min_length=1, max_length=50)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    @field_validator("company_name", "contact_name")
    @classmethod
    def validate_names(cls, v: str) -> str:
        return _normalize_name(v)

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip().lower()
        if v == CANDIDATES_TENANT_SLUG:
            raise ValueError("domain is reserved")
        return v


class SignupResponse(CamelModel):
    message: str
    is_free: Optional[bool] = None
    checkout_url: Optional[str] = None
    token: Optional[str] = None


class CheckoutVerifyResponse(CamelModel):
    success: bool
    message: str


class CheckoutSuccessResponse(CamelModel):
    completed: bool
    plan: Optional[str] = None
    email: Optional[str] = None


# ---------------------------------------------------------
# Sign in
# ---------------------------------------------------------
class SignInRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    tenant_id: str = Field(default=CANDIDATES_TENANT_SLUG, max_length=100)
    two_factor_token: Optional[str] = Field(default=None, max_length=32)


class UserSummary(CamelModel):
    id: uuid.UUID
    name: str
    email: EmailStr


class SignInResponse(CamelModel):
    requires_two_factor: bool
    access_token: Optional[str] = Field(default=None, alias="access_token")
    token_type: Optional[str] = Field(default=None, alias="token_type")
    tenant_type: Optional[str] = None
    user: Optional[UserSummary] = None
    user_id: Optional[uuid.UUID] = None
    message: Optional[str] = None


class TokenResponse(CamelModel):
    access_token: str = Field(alias="access_token")
    token_type: str = Field(default="bearer", alias="token_type")


# ---------------------------------------------------------
# Profile
# ---------------------------------------------------------
class TenantProfile(CamelModel):
    id: uuid.UUID
    name: str
    slug: str
    plan: str
    plan_expires_at: Optional[datetime] = None


class ProfileResponse(CamelModel):
    user_id: uuid.UUID
    email: EmailStr
    name: str
    avatar: Optional[str] = None
    tenant_id: uuid.UUID
    tenant_type: str
    tenant: TenantProfile


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
class ForgotPasswordRequest(CamelModel):
    email: EmailStr
    tenant_id: str = Field(default=CANDIDATES_TENANT_SLUG, max_length=100)


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=16, max_length=128)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _check_password(v)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return _check_password(v)


class MessageResponse(CamelModel):
    message: str

# backend/talentloop/schemas/roles.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from talentloop.core.roles import RoleType, normalize_role
from talentloop.schemas.base import CamelModel


def _role(value) -> RoleType:
    r = normalize_role(value)
    if r is None:
        raise ValueError(f"Unknown role. Allowed: {', '.join(x.value for x in RoleType)}")
    return r


class PermissionOut(CamelModel):
    id: uuid.UUID
    name: str
    module: str
    action: str
    description: Optional[str] = None


class RoleOut(CamelModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    level: int
    permissions: list[str] = []


class UpdateRolePermissionsRequest(CamelModel):
    permission_ids: list[uuid.UUID]


class AssignRoleRequest(CamelModel):
    user_id: uuid.UUID
    role: RoleType
    expires_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def validate_role(cls, v) -> RoleType:
        return _role(v)


class ChangeRoleRequest(CamelModel):
    user_id: uuid.UUID
    new_role: RoleType

    @field_validator("new_role", mode="before")
    @classmethod
    def validate_role(cls, v) -> RoleType:
        return _role(v)


class RemoveRoleRequest(CamelModel):
    user_id: uuid.UUID


class UserRoleOut(CamelModel):
    user_id: uuid.UUID
    tenant_id: uuid.UUID
    role: Optional[str] = None
    level: int = 0
    assigned_at: Optional[datetime] = None
    assigned_by: Optional[uuid.UUID] = None
    expires_at: Optional[datetime] = None


class TeamMember(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    is_active: bool
    role: Optional[str] = None
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class MyPermissionsResponse(CamelModel):
    role: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)

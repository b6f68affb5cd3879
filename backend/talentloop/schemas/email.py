# backend/talentloop/schemas/email.py
from __future__ import annotations

from datetime import datetime

from talentloop.schemas.base import CamelModel


class CheckLimitsResponse(CamelModel):
    message: str
    timestamp: datetime

# backend/talentloop/api/v1/email.py
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.api.v1.auth import get_current_user
from talentloop.core.limit_monitor import check_limits
from talentloop.db.session import get_db
from talentloop.schemas.email import CheckLimitsResponse

router = APIRouter(prefix="/email", tags=["email"], dependencies=[Depends(get_current_user)])


@router.post("/check-limits", response_model=CheckLimitsResponse)
async def run_limit_check(db: AsyncSession = Depends(get_db)) -> CheckLimitsResponse:
    """
    Run the plan-usage check now instead of waiting for the next scheduled pass.
    """
    await check_limits(db)
    return CheckLimitsResponse(message="Limit check completed", timestamp=datetime.now(timezone.utc))

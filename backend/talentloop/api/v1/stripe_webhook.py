# backend/talentloop/api/v1/stripe_webhook.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from talentloop.core import stripe_gateway
from talentloop.core.billing import dispatch_webhook_event
from talentloop.core.config import settings
from talentloop.core.logging import get_logger
from talentloop.core.rate_limit import limiter
from talentloop.db.session import get_db

router = APIRouter(prefix="/stripe", tags=["stripe"])

logger = get_logger(__name__)


@router.post("/webhook")
@limiter.exempt
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    db: AsyncSession = Depends(get_db),
):
    """
    Stripe event receiver. The raw body is needed for signature verification.
    """
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook secret not configured")

    payload = await request.body()
    try:
        event = stripe_gateway.construct_webhook_event(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
    except stripe_gateway.SignatureVerificationError:
        logger.warning("stripe_webhook_bad_signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    await dispatch_webhook_event(db, event)
    return {"received": True}

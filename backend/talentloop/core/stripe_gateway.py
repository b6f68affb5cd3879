# backend/talentloop/core/stripe_gateway.py
"""
Thin wrapper over the stripe SDK.

The SDK is synchronous; every call runs in the threadpool so request handlers
stay non-blocking. Results are returned as plain dicts.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import stripe
from fastapi.concurrency import run_in_threadpool

from talentloop.core.config import settings
from talentloop.core.logging import get_logger

logger = get_logger(__name__)

StripeError = stripe.StripeError
SignatureVerificationError = stripe.SignatureVerificationError
InvalidRequestError = stripe.InvalidRequestError


class StripeNotConfigured(RuntimeError):
    pass


def _configure() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise StripeNotConfigured("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


async def _call(fn, *args, **kwargs) -> dict[str, Any]:
    _configure()
    result = await run_in_threadpool(fn, *args, **kwargs)
    return _as_dict(result)


# ---------------------------------------------------------
# Customers
# ---------------------------------------------------------
async def create_customer(*, email: str, name: str, metadata: Optional[dict[str, str]] = None) -> dict[str, Any]:
    customer = await _call(stripe.Customer.create, email=email, name=name, metadata=metadata or {})
    logger.info("stripe_customer_created", customer_id=customer.get("id"))
    return customer


# ---------------------------------------------------------
# Checkout
# ---------------------------------------------------------
async def create_subscription_checkout(
    *,
    customer_id: str,
    price_id: str,
    success_url: str,
    cancel_url: str,
    metadata: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    meta = metadata or {}
    session = await _call(
        stripe.checkout.Session.create,
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=meta,
        subscription_data={"metadata": meta},
    )
    logger.info("stripe_checkout_session_created", session_id=session.get("id"), price_id=price_id)
    return session


async def retrieve_checkout_session(session_id: str) -> dict[str, Any]:
    return await _call(stripe.checkout.Session.retrieve, session_id)


async def first_line_item_price_id(session_id: str) -> Optional[str]:
    items = await _call(stripe.checkout.Session.list_line_items, session_id, limit=1)
    data = items.get("data") or []
    if not data:
        return None
    price = data[0].get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


# ---------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------
async def retrieve_subscription(subscription_id: str) -> dict[str, Any]:
    return await _call(stripe.Subscription.retrieve, subscription_id)


async def change_subscription_price(subscription_id: str, price_id: str) -> dict[str, Any]:
    """
    Swap the price of the first subscription item, invoicing the proration now.
    """
    sub = await retrieve_subscription(subscription_id)
    items = (sub.get("items") or {}).get("data") or []
    if not items:
        raise InvalidRequestError("Subscription has no items", param="items")

    updated = await _call(
        stripe.Subscription.modify,
        subscription_id,
        items=[{"id": items[0]["id"], "price": price_id}],
        proration_behavior="always_invoice",
        payment_behavior="error_if_incomplete",
    )
    logger.info("stripe_subscription_price_changed", subscription_id=subscription_id, price_id=price_id)
    return updated


async def cancel_subscription(subscription_id: str) -> dict[str, Any]:
    canceled = await _call(stripe.Subscription.cancel, subscription_id)
    logger.info("stripe_subscription_canceled", subscription_id=subscription_id)
    return canceled


# ---------------------------------------------------------
# Billing portal
# ---------------------------------------------------------
async def create_billing_portal_session(*, customer_id: str, return_url: str) -> dict[str, Any]:
    return await _call(stripe.billing_portal.Session.create, customer=customer_id, return_url=return_url)


# ---------------------------------------------------------
# Webhooks
# ---------------------------------------------------------
def construct_webhook_event(payload: bytes, signature: str, secret: str) -> dict[str, Any]:
    """
    Verify the signature and return the event as a dict.
    Raises SignatureVerificationError or ValueError.
    """
    stripe.Webhook.construct_event(payload, signature, secret)
    return json.loads(payload)


def first_item_price_id(subscription: dict[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


def period_end_of(subscription: dict[str, Any]) -> Optional[int]:
    """
    current_period_end moved from the subscription to its items in recent API versions.
    """
    if subscription.get("current_period_end"):
        return subscription["current_period_end"]
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_end")
    return None


def period_start_of(subscription: dict[str, Any]) -> Optional[int]:
    if subscription.get("current_period_start"):
        return subscription["current_period_start"]
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_start")
    return None

# tests/test_stripe_webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest

from talentloop.api.v1 import stripe_webhook
from talentloop.db.session import get_db

SECRET = "whsec_test"
URL = "/api/v1/stripe/webhook"


def sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    ts = timestamp or int(time.time())
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture()
def dispatched(monkeypatch):
    """
    Replaces event handling and the DB session; records dispatched events.
    """
    from talentloop.main import app as fastapi_app

    events = []

    async def _dispatch(db, event):
        events.append(event)

    async def _no_db():
        yield None

    monkeypatch.setattr(stripe_webhook, "dispatch_webhook_event", _dispatch)
    monkeypatch.setattr(stripe_webhook.settings, "STRIPE_WEBHOOK_SECRET", SECRET)
    fastapi_app.dependency_overrides[get_db] = _no_db
    yield events
    fastapi_app.dependency_overrides.clear()


@pytest.mark.asyncio(loop_scope="session")
async def test_missing_signature_header_is_rejected(api_client, dispatched):
    r = await api_client.post(URL, content=b"{}")
    assert r.status_code == 400
    assert dispatched == []


@pytest.mark.asyncio(loop_scope="session")
async def test_bad_signature_is_rejected(api_client, dispatched):
    payload = json.dumps({"id": "evt_1", "type": "invoice.payment_failed"}).encode()
    r = await api_client.post(URL, content=payload, headers={"stripe-signature": sign(payload, secret="whsec_other")})
    assert r.status_code == 400
    assert dispatched == []


@pytest.mark.asyncio(loop_scope="session")
async def test_unconfigured_secret_is_rejected(api_client, dispatched, monkeypatch):
    monkeypatch.setattr(stripe_webhook.settings, "STRIPE_WEBHOOK_SECRET", "")
    payload = b'{"id": "evt_1"}'
    r = await api_client.post(URL, content=payload, headers={"stripe-signature": sign(payload)})
    assert r.status_code == 400


@pytest.mark.asyncio(loop_scope="session")
async def test_signed_event_is_dispatched(api_client, dispatched):
    event = {
        "id": "evt_1",
        "type": "customer.subscription.deleted",
        "data": {"object": {"id": "sub_123", "status": "canceled"}},
    }
    payload = json.dumps(event).encode()
    r = await api_client.post(URL, content=payload, headers={"stripe-signature": sign(payload)})

    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert [e["id"] for e in dispatched] == ["evt_1"]
    assert dispatched[0]["data"]["object"]["id"] == "sub_123"

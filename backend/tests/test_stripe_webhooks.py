from __future__ import annotations

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from expensor.api.routes.stripe_webhooks import router as stripe_router
from expensor.services.billing_service import BillingService


@pytest.fixture(scope="module")
def app_client():
    app = FastAPI()
    app.include_router(stripe_router)
    return TestClient(app)


def _fake_event(event_type: str, data_object: dict, event_id: str = "evt_test_1"):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": data_object},
    }


def _paid_session(session_id: str = "cs_test_1", tokens: str = "50"):
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": "paid",
        "metadata": {"telegramId": "42", "tokens": tokens},
    }


class DummyStripe:
    class SignatureVerificationError(Exception):
        pass

    class Webhook:
        calls = []

        @staticmethod
        def construct_event(payload, sig_header, secret):
            DummyStripe.Webhook.calls.append((payload, sig_header, secret))
            # Accept any payload when secret matches "good"
            if secret != "good":
                raise DummyStripe.SignatureVerificationError("bad secret")
            return json.loads(payload.decode("utf-8"))


class DummyRedis:
    def __init__(self):
        self.store = set()

    def set(self, name, value, nx=True, ex=None):
        if name in self.store:
            return False
        self.store.add(name)
        return True

    def delete(self, name):
        self.store.discard(name)


@pytest.fixture
def fulfilled(monkeypatch):
    import expensor.api.routes.stripe_webhooks as wh
    from expensor.core import config as cfg

    monkeypatch.setattr(wh, "stripe", DummyStripe)
    monkeypatch.setattr(cfg.settings, "STRIPE_WEBHOOK_SECRET", None, raising=False)
    monkeypatch.setattr(cfg.settings, "STRIPE_WEBHOOK_SECRETS", "bad, good", raising=False)
    redis_singleton = DummyRedis()
    monkeypatch.setattr(wh, "_get_redis_client", lambda: redis_singleton)

    calls = []

    async def _fulfil(self, db, session_obj):
        calls.append(session_obj)
        return 50 * len(calls)

    monkeypatch.setattr(BillingService, "fulfil_checkout_session", _fulfil)
    return calls


def _post(client, event, signature="stub"):
    return client.post("/webhooks/stripe", content=json.dumps(event).encode("utf-8"), headers={"stripe-signature": signature})


def test_completed_checkout_is_credited_once(app_client, fulfilled):
    event = _fake_event("checkout.session.completed", _paid_session())

    resp = _post(app_client, event)
    assert resp.status_code == 200
    body = resp.json()
    assert body["received"] is True
    assert body["credited"] is True
    assert body["newBalance"] == 50
    assert fulfilled[0]["metadata"] == {"telegramId": "42", "tokens": "50"}

    # Stripe redelivery of the same event id
    again = _post(app_client, event)
    assert again.status_code == 200
    assert again.json().get("duplicate") is True
    assert len(fulfilled) == 1


def test_second_secret_is_tried(app_client, fulfilled):
    import expensor.api.routes.stripe_webhooks as wh

    wh.stripe.Webhook.calls.clear()
    _post(app_client, _fake_event("checkout.session.completed", _paid_session(), event_id="evt_rotation"))
    assert [c[2] for c in wh.stripe.Webhook.calls] == ["bad", "good"]


def test_invalid_signature_is_400(app_client, fulfilled, monkeypatch):
    from expensor.core import config as cfg

    monkeypatch.setattr(cfg.settings, "STRIPE_WEBHOOK_SECRETS", "bad", raising=False)
    resp = _post(app_client, _fake_event("checkout.session.completed", _paid_session(), event_id="evt_sig"))
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid signature"}
    assert fulfilled == []


def test_missing_secret_is_500(app_client, fulfilled, monkeypatch):
    from expensor.core import config as cfg

    monkeypatch.setattr(cfg.settings, "STRIPE_WEBHOOK_SECRETS", None, raising=False)
    resp = _post(app_client, _fake_event("checkout.session.completed", _paid_session(), event_id="evt_cfg"))
    assert resp.status_code == 500


def test_other_event_types_are_acknowledged(app_client, fulfilled):
    resp = _post(app_client, _fake_event("invoice.paid", {"id": "in_1", "object": "invoice"}, event_id="evt_other"))
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "type": "invoice.paid"}
    assert fulfilled == []


def test_failed_fulfilment_can_be_retried(app_client, fulfilled, monkeypatch):
    attempts = []

    async def _boom(self, db, session_obj):
        attempts.append(session_obj["id"])
        if len(attempts) == 1:
            raise RuntimeError("database unavailable")
        return 10

    monkeypatch.setattr(BillingService, "fulfil_checkout_session", _boom)
    event = _fake_event("checkout.session.completed", _paid_session("cs_retry", tokens="10"), event_id="evt_retry")

    first = _post(app_client, event)
    assert first.status_code == 500

    retry = _post(app_client, event)
    assert retry.status_code == 200
    assert retry.json()["newBalance"] == 10
    assert attempts == ["cs_retry", "cs_retry"]

from __future__ import annotations

import asyncio
import json
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import expensor.api.routes.categories as categories_routes
import expensor.api.routes.receipts as receipts_routes
from expensor.api.dependencies import get_db_session
from expensor.api.main import app
from expensor.core.config import settings
from expensor.core.database import Base
from expensor.core.security import sign_init_data
from expensor.services.receipt_query import ReceiptQueryService


def _auth(telegram_id: int = 42, language_code: str = "en") -> dict:
    fields = {
        "auth_date": str(int(time.time())),
        "user": json.dumps({"id": telegram_id, "first_name": "Test", "language_code": language_code}),
    }
    return {"Authorization": f"tma {sign_init_data(fields, settings.TELEGRAM_BOT_TOKEN)}"}


@pytest.fixture
def client():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    Session = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    state = {"ready": False}

    async def _session():
        if not state["ready"]:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            state["ready"] = True
        async with Session() as session:
            yield session

    app.dependency_overrides[get_db_session] = _session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _create(client, headers=None, **overrides):
    body = {
        "companyName": "Lidl",
        "date": "2024-06-01",
        "total": 12.5,
        "paidCard": 12.5,
        "items": [{"name": "Milk", "quantity": 2, "unitPrice": 1.25}, {"name": "Eggs", "quantity": 1, "unitPrice": 10}],
    }
    body.update(overrides)
    return client.post("/receipts", json=body, headers=headers or _auth())


def test_health_supports_get_and_head(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.head("/health").status_code == 200


def test_missing_init_data_is_401(client):
    resp = client.get("/receipts")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Missing Telegram init data"}


def test_forged_init_data_is_401(client):
    resp = client.get("/receipts", headers={"Authorization": "tma auth_date=1&user=%7B%22id%22%3A1%7D&hash=00"})
    assert resp.status_code == 401


def test_list_for_new_user_is_empty(client):
    resp = client.get("/receipts", headers=_auth(telegram_id=5))
    assert resp.status_code == 200
    assert resp.json() == {"receipts": [], "hasMore": False, "totalCount": 0, "nextPage": None}


def test_create_then_list_filter_and_facets(client):
    created = _create(client)
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    receipt_id = body["receiptId"]
    _create(client, companyName="Kaufland", date="2024-06-05", total=99, paidCard=None, paidCash=99, items=[])

    page = client.get("/receipts", headers=_auth()).json()
    assert page["totalCount"] == 2
    # newest date first
    first = page["receipts"][1]
    assert first["id"] == receipt_id
    assert first["company"]["name"] == "Lidl"
    assert first["paidCard"] == 12.5

    cash = client.get("/receipts", params={"paymentMethod": "cash"}, headers=_auth()).json()
    assert [r["company"]["name"] for r in cash["receipts"]] == ["Kaufland"]

    cheap = client.get("/receipts", params={"maxAmount": 50, "search": "Lid"}, headers=_auth()).json()
    assert [r["id"] for r in cheap["receipts"]] == [receipt_id]

    options = client.get("/receipts/filter-options", headers=_auth()).json()
    assert [c["name"] for c in options["companies"]] == ["Kaufland", "Lidl"]
    assert options["categories"] == []


def test_limit_above_maximum_is_rejected(client):
    resp = client.get("/receipts", params={"limit": settings.MAX_PAGE_SIZE + 1}, headers=_auth())
    assert resp.status_code == 422


def test_unknown_sort_field_is_rejected(client):
    resp = client.get("/receipts", params={"sortField": "owner"}, headers=_auth())
    assert resp.status_code == 422


def test_invalid_receipt_reports_field_message(client):
    resp = _create(client, total=0, paidCard=None)
    assert resp.status_code == 422
    assert resp.json()["error"] == "Total must be greater than zero"

    resp = _create(client, paidCash=5, paidCard=5)
    assert resp.status_code == 422
    assert resp.json()["error"] == "Cash and card amounts must add up to the total"


def test_unknown_category_is_400(client):
    resp = _create(client, categoryId=4242)
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid category"}


def test_detail_items_and_update(client):
    receipt_id = _create(client).json()["receiptId"]

    detail = client.get(f"/receipts/{receipt_id}", headers=_auth())
    assert detail.status_code == 200
    assert [i["name"] for i in detail.json()["items"]] == ["Milk", "Eggs"]

    items = client.get(f"/receipts/{receipt_id}/items", headers=_auth()).json()
    assert [i["unitPrice"] for i in items] == [1.25, 10]

    update = {
        "companyName": "Lidl",
        "date": "2024-06-02",
        "total": 4,
        "currency": "RON",
        "items": [{"name": "Bread", "quantity": 2, "unitPrice": 2}],
    }
    resp = client.put(f"/receipts/{receipt_id}", json=update, headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["message"] == "Receipt updated successfully"

    detail = client.get(f"/receipts/{receipt_id}", headers=_auth()).json()
    assert detail["receipt"]["currency"] == "RON"
    assert [(i["name"], i["total"]) for i in detail["items"]] == [("Bread", 4)]


def test_other_users_receipt_is_404(client):
    receipt_id = _create(client).json()["receiptId"]
    intruder = _auth(telegram_id=99)
    assert client.get(f"/receipts/{receipt_id}", headers=intruder).status_code == 404
    assert client.get(f"/receipts/{receipt_id}/items", headers=intruder).status_code == 404
    resp = client.put(
        f"/receipts/{receipt_id}",
        json={"companyName": "X", "date": "2024-01-01", "total": 1, "currency": "EUR"},
        headers=intruder,
    )
    assert resp.status_code == 404
    assert resp.json() == {"error": "Receipt not found or access denied"}


def test_categories_add_list_and_duplicate(client):
    resp = client.post("/categories", json={"name": "Pets", "icon": "🐶"}, headers=_auth())
    assert resp.status_code == 201
    assert resp.json()["name"] == "Pets"

    dup = client.post("/categories", json={"name": "Pets", "icon": "🐱"}, headers=_auth())
    assert dup.status_code == 409

    bad = client.post("/categories", json={"name": "Pets2", "icon": "xx"}, headers=_auth())
    assert bad.status_code == 422
    assert bad.json()["error"] == "Category icon must be a single emoji"

    listed = client.get("/categories", headers=_auth()).json()
    assert [c["name"] for c in listed] == ["Pets"]


def test_profile_read_update_and_login(client):
    me = client.get("/users/me", headers=_auth(telegram_id=7, language_code="ro")).json()
    assert me["telegramId"] == 7
    assert me["language"] == "ro"
    assert me["preferredCurrency"] == "EUR"
    assert me["tokens"] == 0

    updated = client.patch("/users/me", json={"currency": "USD"}, headers=_auth(telegram_id=7)).json()
    assert updated["preferredCurrency"] == "USD"
    assert updated["language"] == "ro"

    bad = client.patch("/users/me", json={"language": "fr"}, headers=_auth(telegram_id=7))
    assert bad.status_code == 422

    touched = client.post("/users/me/login", headers=_auth(telegram_id=7)).json()
    assert touched["lastLoginAt"] is not None


def test_dashboard_summary(client):
    _create(client)
    summary = client.get("/dashboard", headers=_auth()).json()
    assert summary["receiptCount"] == 1
    assert summary["totalSpending"] == 12.5
    assert len(summary["months"]) == 6


def test_billing_packages_listed(client):
    packages = client.get("/billing/packages").json()
    assert [p["quantity"] for p in packages] == [10, 20, 50, 70, 100]
    assert [p["id"] for p in packages if p["popular"]] == ["tokens_50"]


def test_slow_query_is_504(client, monkeypatch):
    async def _slow(self, db, params):
        await asyncio.sleep(1)

    monkeypatch.setattr(ReceiptQueryService, "get_user_receipts_paginated", _slow)
    monkeypatch.setattr(settings, "QUERY_TIMEOUT_SECONDS", 0.01)
    resp = client.get("/receipts", headers=_auth())
    assert resp.status_code == 504
    assert "error" in resp.json()


def test_filter_options_served_from_cache(client, monkeypatch):
    cached = {"categories": [{"id": 1, "name": "Food", "icon": "🍔"}], "companies": []}

    async def _cache_get(key):
        assert key == "receipts:filter-options:42"
        return cached

    monkeypatch.setattr(receipts_routes, "cache_get_json", _cache_get)
    resp = client.get("/receipts/filter-options", headers=_auth())
    assert resp.json()["categories"][0]["name"] == "Food"


def test_writes_invalidate_filter_options_for_the_caller(client, monkeypatch):
    cleared = []

    async def _record(telegram_id):
        cleared.append(telegram_id)

    monkeypatch.setattr(receipts_routes, "invalidate_filter_options", _record)
    monkeypatch.setattr(categories_routes, "invalidate_filter_options", _record)

    receipt_id = _create(client, headers=_auth(telegram_id=31)).json()["receiptId"]
    assert cleared == [31]

    update = {"companyName": "Lidl", "date": "2024-06-02", "total": 4, "currency": "EUR"}
    assert client.put(f"/receipts/{receipt_id}", json=update, headers=_auth(telegram_id=31)).status_code == 200
    assert cleared == [31, 31]

    resp = client.post("/categories", json={"name": "Travel", "icon": "🚗"}, headers=_auth(telegram_id=32))
    assert resp.status_code == 201
    assert cleared == [31, 31, 32]

    # reads leave the cache alone
    client.get("/receipts/filter-options", headers=_auth(telegram_id=31))
    assert cleared == [31, 31, 32]

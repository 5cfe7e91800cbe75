"""Tests for the transaction, budget, category and receipt endpoints."""

from __future__ import annotations

import json

from tests.fixtures.api import register
from tests.fixtures.providers import MockProvider


def _category_id(client, headers, name):
    for category in client.get("/api/categories", headers=headers).json():
        if category["name"] == name:
            return category["id"]
    raise AssertionError(f"no category {name}")


class TestTransactions:
    async def test_create_list_get(self, make_client):
        client = await make_client()
        headers = register(client)
        dining = _category_id(client, headers, "Dining")

        resp = client.post(
            "/api/transactions",
            json={
                "amount": 18.5,
                "description": "Ramen",
                "category_id": dining,
                "transaction_date": "2026-10-03",
            },
            headers=headers,
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["category_name"] == "Dining"
        assert created["transaction_type"] == "expense"

        page = client.get("/api/transactions?category=din", headers=headers).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == created["id"]

        one = client.get(f"/api/transactions/{created['id']}", headers=headers)
        assert one.json()["description"] == "Ramen"

    async def test_filters(self, make_client):
        client = await make_client()
        headers = register(client)
        for amount, kind, day in [(10, "expense", "01"), (2000, "income", "15")]:
            client.post(
                "/api/transactions",
                json={
                    "amount": amount,
                    "description": kind,
                    "transaction_type": kind,
                    "transaction_date": f"2026-10-{day}",
                },
                headers=headers,
            )

        income = client.get(
            "/api/transactions?transaction_type=income", headers=headers
        ).json()
        assert [t["amount"] for t in income["items"]] == [2000]
        early = client.get(
            "/api/transactions?end_date=2026-10-10", headers=headers
        ).json()
        assert [t["description"] for t in early["items"]] == ["expense"]

    async def test_update_and_delete(self, make_client):
        client = await make_client()
        headers = register(client)
        txn = client.post(
            "/api/transactions",
            json={"amount": 5, "description": "Coffee"},
            headers=headers,
        ).json()

        patched = client.patch(
            f"/api/transactions/{txn['id']}", json={"amount": 6.5}, headers=headers
        )
        assert patched.json()["amount"] == 6.5
        assert patched.json()["description"] == "Coffee"

        txn_url = f"/api/transactions/{txn['id']}"
        assert client.delete(txn_url, headers=headers).status_code == 204
        missing = client.get(f"/api/transactions/{txn['id']}", headers=headers)
        assert missing.status_code == 404

    async def test_negative_amount_rejected(self, make_client):
        client = await make_client()
        headers = register(client)
        resp = client.post(
            "/api/transactions",
            json={"amount": -5, "description": "Refund"},
            headers=headers,
        )
        assert resp.status_code == 422

    async def test_other_users_category_is_not_found(self, make_client):
        client = await make_client()
        alice = register(client)
        bob = register(client, email="bob@example.com", display_name="Bob")
        bobs_dining = _category_id(client, bob, "Dining")

        resp = client.post(
            "/api/transactions",
            json={"amount": 5, "description": "x", "category_id": bobs_dining},
            headers=alice,
        )

        assert resp.status_code == 404

    async def test_tenant_isolation(self, make_client):
        client = await make_client()
        alice = register(client)
        bob = register(client, email="bob@example.com", display_name="Bob")
        txn = client.post(
            "/api/transactions", json={"amount": 5, "description": "Tea"}, headers=alice
        ).json()

        txn_url = f"/api/transactions/{txn['id']}"
        assert client.get(txn_url, headers=bob).status_code == 404
        assert client.delete(txn_url, headers=bob).status_code == 404
        assert client.get("/api/transactions", headers=bob).json()["total"] == 0

    async def test_summaries(self, make_client):
        client = await make_client()
        headers = register(client)
        dining = _category_id(client, headers, "Dining")
        for amount, kind in [(30, "expense"), (12, "expense"), (500, "income")]:
            client.post(
                "/api/transactions",
                json={
                    "amount": amount,
                    "description": kind,
                    "transaction_type": kind,
                    "category_id": dining,
                },
                headers=headers,
            )

        spending = client.get(
            "/api/transactions/summary/spending", headers=headers
        ).json()
        assert spending["period"] == "month"
        assert spending["total_expenses"] == 42
        assert spending["total_income"] == 500
        assert spending["net"] == 458
        assert spending["expense_count"] == 2

        by_category = client.get(
            "/api/transactions/summary/categories?period=year", headers=headers
        ).json()
        assert by_category["period"] == "year"
        assert by_category["categories"] == [
            {"category_name": "Dining", "total": 42, "count": 2}
        ]

        bad = client.get(
            "/api/transactions/summary/spending?period=decade", headers=headers
        )
        assert bad.status_code == 422


class TestBudgets:
    async def test_create_with_status(self, make_client):
        client = await make_client()
        headers = register(client)
        groceries = _category_id(client, headers, "Groceries")

        resp = client.post(
            "/api/budgets",
            json={"category_id": groceries, "name": "Food", "amount": 300},
            headers=headers,
        )

        assert resp.status_code == 201
        budget = resp.json()
        assert budget["category_name"] == "Groceries"
        assert budget["status"]["spent"] == 0
        assert budget["status"]["status"] == "on_track"

        listed = client.get("/api/budgets?active_only=true", headers=headers).json()
        assert [b["id"] for b in listed] == [budget["id"]]

    async def test_update_and_delete(self, make_client):
        client = await make_client()
        headers = register(client)
        groceries = _category_id(client, headers, "Groceries")
        budget = client.post(
            "/api/budgets",
            json={"category_id": groceries, "name": "Food", "amount": 300},
            headers=headers,
        ).json()

        patched = client.patch(
            f"/api/budgets/{budget['id']}", json={"amount": 450}, headers=headers
        ).json()
        assert patched["amount"] == 450
        assert patched["updated_at"] >= budget["updated_at"]

        budget_url = f"/api/budgets/{budget['id']}"
        assert client.delete(budget_url, headers=headers).status_code == 204
        assert client.get("/api/budgets", headers=headers).json() == []

    async def test_get_and_status(self, make_client):
        client = await make_client()
        headers = register(client)
        groceries = _category_id(client, headers, "Groceries")
        budget = client.post(
            "/api/budgets",
            json={"category_id": groceries, "name": "Food", "amount": 200},
            headers=headers,
        ).json()
        client.post(
            "/api/transactions",
            json={"amount": 170, "description": "Market", "category_id": groceries},
            headers=headers,
        )

        fetched = client.get(f"/api/budgets/{budget['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["name"] == "Food"
        assert fetched.json()["status"]["spent"] == 170

        status = client.get(
            f"/api/budgets/{budget['id']}/status", headers=headers
        ).json()
        assert status["spent"] == 170
        assert status["remaining"] == 30
        assert status["status"] == "warning"
        assert status["alert_triggered"] is True

        other = register(client, email="bob@example.com", display_name="Bob")
        hidden = client.get(f"/api/budgets/{budget['id']}/status", headers=other)
        assert hidden.status_code == 404

    async def test_unknown_budget(self, make_client):
        client = await make_client()
        headers = register(client)
        resp = client.patch("/api/budgets/nope", json={"amount": 1}, headers=headers)
        assert resp.status_code == 404


class TestCategories:
    async def test_create_and_delete(self, make_client):
        client = await make_client()
        headers = register(client)

        created = client.post(
            "/api/categories", json={"name": "Pets"}, headers=headers
        )
        assert created.status_code == 201
        assert created.json()["is_default"] is False

        resp = client.delete(f"/api/categories/{created.json()['id']}", headers=headers)
        assert resp.status_code == 204

    async def test_duplicate_name(self, make_client):
        client = await make_client()
        headers = register(client)
        resp = client.post(
            "/api/categories", json={"name": "groceries"}, headers=headers
        )
        assert resp.status_code == 400

    async def test_update(self, make_client):
        client = await make_client()
        headers = register(client)
        pets = client.post(
            "/api/categories", json={"name": "Pets"}, headers=headers
        ).json()
        url = f"/api/categories/{pets['id']}"

        renamed = client.put(
            url, json={"name": "Animals", "icon": "paw"}, headers=headers
        )
        assert renamed.status_code == 200
        assert renamed.json()["name"] == "Animals"
        assert renamed.json()["icon"] == "paw"
        assert renamed.json()["color"] == pets["color"]

        same = client.put(url, json={"name": "animals"}, headers=headers)
        assert same.status_code == 200

        clash = client.put(url, json={"name": "dining"}, headers=headers)
        assert clash.status_code == 400
        assert "already exists" in clash.json()["detail"]

        missing = client.put(
            "/api/categories/nope", json={"name": "X"}, headers=headers
        )
        assert missing.status_code == 404

    async def test_in_use_category_cannot_be_deleted(self, make_client):
        client = await make_client()
        headers = register(client)
        dining = _category_id(client, headers, "Dining")
        client.post(
            "/api/transactions",
            json={"amount": 5, "description": "Taco", "category_id": dining},
            headers=headers,
        )
        resp = client.delete(f"/api/categories/{dining}", headers=headers)
        assert resp.status_code == 400
        assert "still used" in resp.json()["detail"]


class TestReceipts:
    async def test_upload_and_fetch(self, make_client):
        payload = {
            "merchantName": "Corner Market",
            "totalAmount": 9.5,
            "currency": "USD",
            "date": "2026-10-12",
            "category": "groceries",
            "items": [{"name": "Bread", "amount": 9.5}],
            "confidence": 0.8,
        }
        client = await make_client(
            MockProvider(steps=[json.dumps(payload)], default="groceries")
        )
        headers = register(client)

        resp = client.post(
            "/api/receipts",
            json={"text": "CORNER MARKET\nBread 9.50", "file_name": "r.png"},
            headers=headers,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["transaction"]["amount"] == 9.5
        assert body["receipt"]["items"][0]["name"] == "Bread"

        fetched = client.get(
            f"/api/receipts/{body['receipt']['receipt_id']}", headers=headers
        ).json()
        assert fetched["merchant_name"] == "Corner Market"
        assert fetched["transaction_id"] == body["transaction"]["id"]

    async def test_unknown_receipt(self, make_client):
        client = await make_client()
        headers = register(client)
        assert client.get("/api/receipts/nope", headers=headers).status_code == 404

    async def test_unreadable_receipt(self, make_client):
        client = await make_client(MockProvider(steps=["no idea"]))
        headers = register(client)
        resp = client.post("/api/receipts", json={"text": "???"}, headers=headers)
        assert resp.status_code == 400

    async def test_confirm(self, make_client):
        payload = {
            "merchantName": "Corner Market",
            "totalAmount": 9.5,
            "category": "groceries",
            "items": [{"name": "Bread", "amount": 9.5}],
        }
        client = await make_client(
            MockProvider(steps=[json.dumps(payload)], default="groceries")
        )
        headers = register(client)
        stored = client.post(
            "/api/receipts",
            json={"text": "CORNER MARKET", "create_transaction": False},
            headers=headers,
        ).json()
        url = f"/api/receipts/{stored['receipt']['receipt_id']}/confirm"

        resp = client.put(
            url,
            json={"confirmed_data": dict(payload, totalAmount=11.0)},
            headers=headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["transaction"]["amount"] == 11.0
        assert body["receipt"]["transaction_id"] == body["transaction"]["id"]
        again = client.put(
            url, json={"confirmed_data": payload}, headers=headers
        )
        assert again.status_code == 400
        missing = client.put(
            "/api/receipts/nope/confirm",
            json={"confirmed_data": payload},
            headers=headers,
        )
        assert missing.status_code == 404

"""
Tests for the HTTP API.

Tests cover:
- Deposit submission and review
- Error envelope and status codes
- Balance, conversion and portfolio reads
- IPO creation, subscription and the sweep endpoint
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient

from core.exceptions import DatabasePersistenceError
from ledger_engine.api import GENERIC_ERROR_MESSAGE, create_app


@pytest.fixture
def client(ledger):
    return TestClient(create_app(ledger), raise_server_exceptions=False)


def _deposit(client, user_id=1, amount="1000.00", currency="USD"):
    response = client.post("/deposits", json={
        "user_id": user_id,
        "amount": amount,
        "currency": currency,
        "transaction_id": "BANK-REF-1",
    })
    assert response.status_code == 201
    return response.json()


def _approve(client, deposit_id):
    return client.post(
        f"/admin/deposits/{deposit_id}/review",
        json={"decision": "approved", "reviewer_id": 7},
    )


# =============================================================
# TEST: Health
# =============================================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] is True


# =============================================================
# TEST: Deposits
# =============================================================

class TestDepositEndpoints:
    """Test the deposit review flow over HTTP."""

    def test_submit_and_approve(self, client):
        deposit = _deposit(client)
        assert deposit["status"] == "pending"
        assert deposit["method"] == "bank_transfer"

        response = _approve(client, deposit["id"])

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["reviewed_by"] == 7

        balance = client.get("/users/1/balance").json()
        assert Decimal(balance["total"]) == Decimal("1000")
        assert Decimal(balance["available"]) == Decimal("1000")

    def test_second_review_conflicts(self, client):
        deposit = _deposit(client)
        _approve(client, deposit["id"])

        response = client.post(
            f"/admin/deposits/{deposit['id']}/review",
            json={"decision": "rejected", "reviewer_id": 7, "reason": "duplicate"},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "STA_INVALID_TRANSITION"

    def test_reject_without_reason(self, client):
        deposit = _deposit(client)

        response = client.post(
            f"/admin/deposits/{deposit['id']}/review",
            json={"decision": "rejected", "reviewer_id": 7},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VAL_MISSING_REJECTION_REASON"

    def test_unknown_deposit(self, client):
        response = _approve(client, 404)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RES_DEPOSIT_NOT_FOUND"

    def test_negative_amount(self, client):
        response = client.post("/deposits", json={"user_id": 1, "amount": "-5", "currency": "USD"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VAL_INVALID_AMOUNT"

    def test_list_pending(self, client):
        first = _deposit(client)
        _deposit(client, user_id=2)
        _approve(client, first["id"])

        response = client.get("/admin/deposits", params={"status": "pending"})

        assert response.status_code == 200
        assert [d["user_id"] for d in response.json()] == [2]

    def test_manual_deposit(self, client):
        body = {"user_id": 3, "amount": "250", "currency": "TRY", "reviewer_id": 7}

        # TRY deposits need a TRY -> USD rate before they can count
        missing = client.post("/admin/deposits/manual", json=body)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "RES_RATE_NOT_FOUND"

        client.put("/admin/currency-rates", json={"from_currency": "TRY", "to_currency": "USD", "rate": "0.0292"})
        response = client.post("/admin/deposits/manual", json=body)

        assert response.status_code == 201
        assert response.json()["status"] == "approved"
        assert response.json()["method"] == "manual_payment"


# =============================================================
# TEST: Currency
# =============================================================

class TestCurrencyEndpoints:

    def test_convert(self, client):
        client.put("/admin/currency-rates", json={
            "from_currency": "USD", "to_currency": "TRY", "rate": "34.25", "updated_by": 7,
        })

        response = client.get("/currency-rates/convert", params={"amount": "100", "from": "usd", "to": "TRY"})

        assert response.status_code == 200
        assert Decimal(response.json()["converted"]) == Decimal("3425.00")
        assert response.json()["from_currency"] == "USD"

    def test_missing_rate(self, client):
        response = client.get("/currency-rates/convert", params={"amount": "100", "from": "XYZ", "to": "USD"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RES_RATE_NOT_FOUND"

    def test_list_rates(self, client):
        client.put("/admin/currency-rates", json={"from_currency": "USD", "to_currency": "EUR", "rate": "0.92"})

        rates = client.get("/currency-rates").json()

        assert [(r["from_currency"], r["to_currency"]) for r in rates] == [("USD", "EUR")]


# =============================================================
# TEST: IPO Flow
# =============================================================

class TestIpoFlow:
    """Create, subscribe, sweep, inspect."""

    def _create_ipo(self, client, clock):
        now = clock.now()
        response = client.post("/admin/ipos", json={
            "symbol": "acme",
            "company_name": "Acme Holding",
            "price_min": "1.00",
            "price_max": "5.00",
            "lot_size": 100,
            "total_shares": 1000,
            "start_date": (now - timedelta(hours=1)).isoformat(),
            "end_date": (now + timedelta(days=1)).isoformat(),
            "currency": "USD",
        })
        assert response.status_code == 201
        return response.json()

    def test_full_flow(self, client, clock):
        _approve(client, _deposit(client)["id"])
        ipo = self._create_ipo(client, clock)
        assert ipo["symbol"] == "ACME"
        assert ipo["status"] == "upcoming"

        opened = client.post("/admin/allocation-sweep").json()
        assert opened["report"]["opened"] == [ipo["id"]]

        response = client.post(f"/ipos/{ipo['id']}/subscriptions", json={
            "user_id": 1, "quantity": 200, "price_per_share": "2.50",
        })
        assert response.status_code == 201
        assert Decimal(response.json()["total_amount"]) == Decimal("500")

        balance = client.get("/users/1/balance").json()
        assert Decimal(balance["reserved"]) == Decimal("500")
        assert Decimal(balance["available"]) == Decimal("500")

        clock.advance(days=2)
        sweep = client.post("/admin/allocation-sweep").json()
        assert sweep["success"] is True

        portfolio = client.get("/users/1/portfolio").json()
        assert portfolio[0]["symbol"] == "ACME"
        assert portfolio[0]["quantity"] == 200

        transactions = client.get("/users/1/transactions", params={"type": "buy"}).json()
        assert transactions[0]["symbol"] == "ACME"
        assert transactions[0]["subscription_id"] == response.json()["id"]

        runs = client.get("/admin/job-runs").json()
        assert len(runs) == 2
        assert all(r["job_name"] == "allocation_sweep" for r in runs)

    def test_ipo_reads(self, client, clock):
        ipo = self._create_ipo(client, clock)

        assert client.get(f"/ipos/{ipo['id']}").json()["company_name"] == "Acme Holding"
        assert [i["id"] for i in client.get("/ipos", params={"status": "upcoming"}).json()] == [ipo["id"]]
        assert client.get("/ipos", params={"status": "listed"}).json() == []

        missing = client.get("/ipos/999")
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "RES_IPO_NOT_FOUND"

    def test_subscription_outside_window(self, client, clock):
        _approve(client, _deposit(client)["id"])
        ipo = self._create_ipo(client, clock)

        response = client.post(f"/ipos/{ipo['id']}/subscriptions", json={
            "user_id": 1, "quantity": 100, "price_per_share": "2.00",
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "STA_OUTSIDE_WINDOW"

    def test_insufficient_balance(self, client, clock):
        ipo = self._create_ipo(client, clock)
        client.post("/admin/allocation-sweep")

        response = client.post(f"/ipos/{ipo['id']}/subscriptions", json={
            "user_id": 1, "quantity": 100, "price_per_share": "2.00",
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "RES_INSUFFICIENT_BALANCE"

    def test_cancel_then_list(self, client, clock):
        _approve(client, _deposit(client)["id"])
        ipo = self._create_ipo(client, clock)
        client.post("/admin/allocation-sweep")
        sub = client.post(f"/ipos/{ipo['id']}/subscriptions", json={
            "user_id": 1, "quantity": 100, "price_per_share": "2.00",
        }).json()

        response = client.post(f"/subscriptions/{sub['id']}/cancel", json={"user_id": 1})

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        rejected = client.get("/users/1/subscriptions", params={"status": "rejected"}).json()
        assert [s["id"] for s in rejected] == [sub["id"]]


# =============================================================
# TEST: Error Envelope
# =============================================================

class TestErrorEnvelope:
    """Internal failures never leak details."""

    def test_infrastructure_message_hidden(self, client, ledger):
        with patch.object(ledger, "get_balance", side_effect=DatabasePersistenceError("password=secret")):
            response = client.get("/users/1/balance")

        assert response.status_code == 500
        assert response.json() == {
            "error": {"code": "INF_DATABASE_ERROR", "message": GENERIC_ERROR_MESSAGE},
        }

    def test_unexpected_exception(self, client, ledger):
        with patch.object(ledger, "get_portfolio", side_effect=RuntimeError("boom")):
            response = client.get("/users/1/portfolio")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INT_UNEXPECTED_ERROR"

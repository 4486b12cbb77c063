"""
test_api.py - HTTP surface: identity headers, error mapping, webhook, health

The app runs its real lifespan against a temporary SQLite database.
"""
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from paylink.core.config import settings
from paylink.core.constants import Category
from paylink.core.dependencies import get_ledger
from paylink.main import app
from paylink.services.payments.monnify import webhook_signature

USER = {"X-User-Id": "api-user"}
SECRET = "whsec-test"


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setattr(settings, "LOG_TO_FILE", False)
    monkeypatch.setattr(settings, "AUDIT_LOG_DIR", tmp_path / "audit")
    monkeypatch.setattr(settings, "MONNIFY_WEBHOOK_SECRET", SECRET)

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def account(client):
    response = client.post(
        "/api/v1/wallet/account",
        json={"email": "ada@example.com", "display_name": "Ada"},
        headers=USER,
    )
    assert response.status_code == 201
    return response.json()


def signed_post(client, payload, secret: str = SECRET):
    body = json.dumps(payload).encode()
    return client.post(
        "/api/v1/webhooks/monnify",
        content=body,
        headers={"monnify-signature": webhook_signature(secret, body), "Content-Type": "application/json"},
    )


def open_funding(client, reference: str, amount: str = "2500") -> None:
    client.portal.call(get_ledger().open_pending_credit, "api-user", Decimal(amount), Category.WALLET_FUNDING, reference)


# =============================================================================
# IDENTITY / ERRORS
# =============================================================================

def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"

    health = client.get("/api/v1/health")
    assert health.status_code == 200
    assert health.json()["services"]["database"] == "healthy"


def test_identity_header_required(client):
    assert client.get("/api/v1/wallet/balance").status_code == 401


def test_admin_header_required(client, account):
    assert client.get("/api/v1/wallet/failed", headers=USER).status_code == 403
    assert client.get("/api/v1/wallet/failed", headers={**USER, "X-Admin-Id": "ops"}).json() == []


def test_account_and_balance(client, account):
    assert account["user_id"] == "api-user"
    assert Decimal(account["wallet_balance"]) == Decimal("0")

    balance = client.get("/api/v1/wallet/balance", headers=USER)
    assert balance.status_code == 200
    assert balance.json()["currency"] == "NGN"


def test_domain_errors_keep_their_status(client, account):
    missing = client.get("/api/v1/wallet/balance", headers={"X-User-Id": "nobody"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "ResourceNotFoundError"

    broke = client.post(
        "/api/v1/wallet/transfer",
        json={"source": "main", "target": "savings", "amount": "100"},
        headers=USER,
    )
    assert broke.status_code == 402
    assert broke.json()["error"] == "InsufficientFundsError"


def test_pin_endpoints(client, account):
    assert client.post("/api/v1/security/pin", json={"pin": "12"}, headers=USER).status_code == 422
    assert client.post("/api/v1/security/pin", json={"pin": "2468"}, headers=USER).status_code == 204

    assert client.post("/api/v1/security/pin/verify", json={"pin": "2468"}, headers=USER).json() == {"valid": True}
    assert client.post("/api/v1/security/pin/verify", json={"pin": "0000"}, headers=USER).json() == {"valid": False}


# =============================================================================
# MONNIFY WEBHOOK
# =============================================================================

def test_webhook_settles_funding_once(client, account):
    open_funding(client, "FUND-API-1")
    payload = {
        "eventType": "SUCCESSFUL_TRANSACTION",
        "eventData": {
            "paymentReference": "FUND-API-1",
            "amountPaid": 2500,
            "paymentStatus": "PAID",
            "transactionReference": "MNFY|API|1",
        },
    }

    first = signed_post(client, payload)
    second = signed_post(client, payload)

    assert first.status_code == 200
    assert first.json() == {"status": "success", "reference": "FUND-API-1"}
    assert second.json()["status"] == "success"
    assert Decimal(client.get("/api/v1/wallet/balance", headers=USER).json()["wallet_balance"]) == Decimal("2500")


def test_webhook_expired_payment(client, account):
    open_funding(client, "FUND-API-2")

    response = signed_post(
        client, {"paymentReference": "FUND-API-2", "amountPaid": 0, "paymentStatus": "EXPIRED"}
    )

    assert response.json() == {"status": "failed", "reference": "FUND-API-2"}


def test_webhook_amount_mismatch(client, account):
    open_funding(client, "FUND-API-3")

    response = signed_post(
        client, {"paymentReference": "FUND-API-3", "amountPaid": 100, "paymentStatus": "PAID"}
    )

    assert response.status_code == 422


def test_webhook_other_status_ignored(client, account):
    response = signed_post(
        client, {"paymentReference": "FUND-API-4", "amountPaid": 0, "paymentStatus": "PENDING"}
    )
    assert response.json()["status"] == "ignored"


def test_webhook_rejections(client, monkeypatch):
    payload = {"paymentReference": "X", "amountPaid": 1, "paymentStatus": "PAID"}

    assert signed_post(client, payload, secret="wrong").status_code == 401
    assert signed_post(client, {"unexpected": True}).status_code == 400

    monkeypatch.setattr(settings, "MONNIFY_WEBHOOK_SECRET", None)
    assert signed_post(client, payload).status_code == 501

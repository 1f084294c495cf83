"""
Integration tests for the Mobile Bank API
Tests end-to-end workflows using FastAPI TestClient
"""

import threading
import time

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from mobile_bank.api import create_app
from mobile_bank.api.dependencies import BankingSystem
from mobile_bank.models import AccountType
from mobile_bank.storage import SQLiteStorage


PASSWORD = "Secret@123"


@pytest.fixture
def client(banking_system):
    """Test client bound to an isolated in-memory banking system"""
    with TestClient(create_app(banking_system), raise_server_exceptions=False) as test_client:
        yield test_client


def register(client, email="ada@example.com"):
    r = client.post("/auth/register", json={
        "email": email,
        "name": "Ada Lovelace",
        "phoneNumber": "+15550100001",
        "password": PASSWORD,
    })
    assert r.status_code == 201
    return r.json()


def bearer(session):
    return {"Authorization": f"Bearer {session['tokens']['accessToken']}"}


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["endpoints"]["transfer"] == "/transfer"

    def test_request_id_is_echoed(self, client):
        r = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert r.headers["X-Request-ID"] == "req-123"


class TestAuthFlow:
    """Registration, login, refresh and profile"""

    def test_register_and_me(self, client):
        session = register(client)
        assert session["user"]["email"] == "ada@example.com"
        assert "passwordHash" not in session["user"]

        r = client.get("/auth/me", headers=bearer(session))
        assert r.status_code == 200
        assert r.json()["user"]["id"] == session["user"]["id"]

    def test_duplicate_registration(self, client):
        register(client)
        r = client.post("/auth/register", json={
            "email": "ADA@example.com", "name": "Ada", "phoneNumber": "5550100001", "password": PASSWORD,
        })
        assert r.status_code == 409
        assert r.json()["error"]["code"] == "DUPLICATE_ENTRY"

    def test_login(self, client):
        register(client)
        r = client.post("/auth/login", json={"email": "ada@example.com", "password": PASSWORD})
        assert r.status_code == 200
        assert set(r.json()["tokens"]) == {"accessToken", "refreshToken"}

        r = client.post("/auth/login", json={"email": "ada@example.com", "password": "Wrong@1234"})
        assert r.status_code == 401
        assert r.json()["error"]["code"] == "INVALID_CREDENTIALS"

    def test_refresh(self, client):
        session = register(client)
        r = client.post("/auth/refresh", json={"refreshToken": session["tokens"]["refreshToken"]})
        assert r.status_code == 200
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {r.json()['accessToken']}"}).status_code == 200

        r = client.post("/auth/refresh", json={"refreshToken": session["tokens"]["accessToken"]})
        assert r.status_code == 401

    def test_biometric_preference(self, client):
        session = register(client)
        r = client.patch("/auth/biometric", json={"biometricEnabled": True}, headers=bearer(session))
        assert r.status_code == 200
        assert r.json()["user"]["biometricEnabled"] is True

    def test_logout(self, client):
        r = client.post("/auth/logout")
        assert r.json() == {"message": "Logged out successfully"}

    @pytest.mark.parametrize("headers,code", [
        ({}, "UNAUTHORIZED"),
        ({"Authorization": "Bearer not-a-token"}, "MALFORMED_TOKEN"),
    ])
    def test_protected_routes_need_a_token(self, client, headers, code):
        r = client.get("/accounts", headers=headers)
        assert r.status_code == 401
        assert r.json()["error"]["code"] == code

    def test_malformed_body_is_validation_error(self, client):
        r = client.post("/auth/register", json={"email": "ada@example.com"})
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"


class TestTransferFlow:
    """Accounts, transfers and history end to end"""

    @pytest.fixture(autouse=True)
    def setup_accounts(self, client, banking_system):
        self.client = client
        self.system = banking_system
        self.session = register(client)
        user_id = self.session["user"]["id"]
        self.checking = banking_system.ledger.open_account(user_id, AccountType.CHECKING, "Checking", Decimal("100.00"))
        self.savings = banking_system.ledger.open_account(user_id, AccountType.SAVINGS, "Savings", Decimal("0"))
        self.headers = bearer(self.session)

    def transfer(self, **body):
        payload = {"fromAccountId": self.checking.id, "toAccountId": "+15550100002", "amount": "30.00"}
        payload.update(body)
        return self.client.post("/transfer", json=payload, headers=self.headers)

    def balance(self, account):
        r = self.client.get(f"/accounts/{account.id}/balance", headers=self.headers)
        assert r.status_code == 200
        return r.json()

    def test_accounts_are_listed_with_masked_numbers(self):
        r = self.client.get("/accounts", headers=self.headers)
        assert r.status_code == 200
        accounts = r.json()["accounts"]
        assert {a["id"] for a in accounts} == {self.checking.id, self.savings.id}
        assert all(a["number"].startswith("****") for a in accounts)

        r = self.client.get(f"/accounts/{self.checking.id}", headers=self.headers)
        assert r.json()["account"]["balance"] == "100.00"

    def test_transfer_updates_balance_and_history(self):
        r = self.transfer(recipientName="Bob")
        assert r.status_code == 201
        transaction = r.json()["transaction"]
        assert transaction["amount"] == "-30.00"
        assert transaction["status"] == "completed"

        assert self.balance(self.checking) == {"balance": "70.00", "currency": "USD"}

        r = self.client.get("/transactions/history", headers=self.headers)
        data = r.json()
        assert [t["id"] for t in data["transactions"]] == [transaction["id"]]
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "totalPages": 1, "hasMore": False}

    def test_transfer_between_own_accounts(self):
        r = self.transfer(toAccountId=self.savings.id, amount="25.50")
        assert r.status_code == 201
        assert self.balance(self.checking)["balance"] == "74.50"
        assert self.balance(self.savings)["balance"] == "25.50"

    def test_transfer_by_phone_reference(self):
        r = self.transfer(toAccountId=None, toPhoneRef="+15550100002")
        assert r.status_code == 201
        assert r.json()["transaction"]["toAccountId"] == "+15550100002"

    def test_both_destinations_rejected(self):
        r = self.transfer(toPhoneRef="+15550100002")
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_missing_destination(self):
        r = self.transfer(toAccountId=None)
        assert r.status_code == 400
        assert r.json()["error"]["message"] == "Recipient account is required"

    def test_insufficient_funds(self):
        r = self.transfer(amount="100.01")
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INSUFFICIENT_FUNDS"
        assert self.balance(self.checking)["balance"] == "100.00"

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "1.234", "10000.01", True, False, None, {"value": 1}])
    def test_invalid_amount(self, amount):
        r = self.transfer(amount=amount)
        assert r.status_code == 400
        assert r.json()["error"]["code"] == "INVALID_AMOUNT"

    def test_boolean_amount_moves_no_money(self):
        r = self.transfer(amount=True)
        assert r.status_code == 400
        assert self.balance(self.checking)["balance"] == "100.00"
        assert self.client.get("/transactions/history", headers=self.headers).json()["pagination"]["total"] == 0

    def test_someone_elses_account(self):
        other = register(self.client, "grace@example.com")
        r = self.client.post("/transfer", headers=bearer(other), json={
            "fromAccountId": self.checking.id, "toAccountId": "EXT-1", "amount": "1.00",
        })
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "ACCOUNT_NOT_FOUND"

        r = self.client.get(f"/accounts/{self.checking.id}/balance", headers=bearer(other))
        assert r.status_code == 404

    def test_transfer_route_under_transactions_prefix(self):
        r = self.client.post("/transactions/transfer", headers=self.headers, json={
            "fromAccountId": self.checking.id, "toAccountId": "EXT-1", "amount": 5,
        })
        assert r.status_code == 201

    def test_history_filters_and_validation(self):
        self.transfer(description="Rent")
        self.transfer(description="Coffee", amount="2.00")

        r = self.client.get("/transactions/history", params={"search": "rent"}, headers=self.headers)
        assert [t["description"] for t in r.json()["transactions"]] == ["Rent"]

        r = self.client.get("/transactions/history", params={"page": 1, "limit": 1}, headers=self.headers)
        assert r.json()["pagination"]["hasMore"] is True
        assert r.json()["transactions"][0]["description"] == "Coffee"

        r = self.client.get("/transactions/history", params={"limit": 0}, headers=self.headers)
        assert r.status_code == 400
        r = self.client.get("/transactions/history",
                            params={"startDate": "2025-02-01", "endDate": "2025-01-01"}, headers=self.headers)
        assert r.status_code == 400


class TestLockedReads:
    """Reads waiting on a held account lock must not stall other requests"""

    @pytest.fixture
    def sqlite_system(self, test_config):
        system = BankingSystem(test_config, storage=SQLiteStorage())
        yield system
        system.close()

    def test_balance_read_behind_a_lock_leaves_health_responsive(self, sqlite_system):
        with TestClient(create_app(sqlite_system), raise_server_exceptions=False) as client:
            session = register(client)
            account = sqlite_system.ledger.open_account(
                session["user"]["id"], AccountType.CHECKING, "Checking", Decimal("100.00")
            )
            held = threading.Event()
            responses = {}

            def hold_lock():
                with sqlite_system.storage.atomic():
                    sqlite_system.storage.lock_account(account.id)
                    held.set()
                    time.sleep(1.0)

            def read_balance():
                responses["balance"] = client.get(f"/accounts/{account.id}/balance", headers=bearer(session))

            holder = threading.Thread(target=hold_lock)
            holder.start()
            assert held.wait(5)
            reader = threading.Thread(target=read_balance)
            reader.start()
            time.sleep(0.1)

            started = time.perf_counter()
            assert client.get("/health").status_code == 200
            elapsed = time.perf_counter() - started

            holder.join()
            reader.join()

        assert elapsed < 0.5
        assert responses["balance"].status_code == 200
        assert responses["balance"].json()["balance"] == "100.00"

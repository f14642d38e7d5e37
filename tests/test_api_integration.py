"""
Integration tests for the Bank Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from bank_ledger.api import LedgerSystem, create_app
from bank_ledger.config import LedgerConfig
from bank_ledger.storage import InMemoryDocumentStore, SQLiteDocumentStore


def make_config(**overrides) -> LedgerConfig:
    settings = {"storage_backend": "memory", "log_level": "WARNING"}
    settings.update(overrides)
    return LedgerConfig(**settings)


@pytest.fixture
def system():
    """Ledger system over in-memory storage"""
    return LedgerSystem(InMemoryDocumentStore())


@pytest.fixture
def client(system):
    """Create a test client for the API"""
    app = create_app(system=system, config=make_config())
    with TestClient(app) as test_client:
        yield test_client


def create(client, name="Mr. Black"):
    response = client.post("/account", json={"name": name})
    assert response.status_code == 201
    return response.json()


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestAccountEndpoints:
    """Create and view accounts"""

    def test_create_account(self, client):
        r = client.post("/account", json={"name": "Mr. Black"})

        assert r.status_code == 201
        assert r.json() == {"account-number": 1, "name": "Mr. Black", "balance": 0}

    def test_create_account_blank_name(self, client):
        r = client.post("/account", json={"name": "  "})
        assert r.status_code == 400

    def test_create_account_missing_name(self, client):
        r = client.post("/account", json={})
        assert r.status_code == 422

    def test_view_account(self, client):
        create(client)

        r = client.get("/account/1")
        assert r.status_code == 200
        assert r.json() == {"account-number": 1, "name": "Mr. Black", "balance": 0}

    def test_view_missing_account(self, client):
        r = client.get("/account/12345")
        assert r.status_code == 404
        assert "not found" in r.json()["detail"]


class TestMoneyEndpoints:
    """Deposits, withdrawals and transfers"""

    def test_deposit(self, client):
        create(client)

        r = client.post("/account/1/deposit", json={"amount": 100})
        assert r.status_code == 200
        assert r.json() == {"account-number": 1, "name": "Mr. Black", "balance": 100}

    @pytest.mark.parametrize("amount", [0, -100])
    def test_deposit_non_positive(self, client, amount):
        create(client)

        r = client.post("/account/1/deposit", json={"amount": amount})
        assert r.status_code == 400
        assert client.get("/account/1").json()["balance"] == 0

    def test_deposit_non_integer(self, client):
        create(client)

        r = client.post("/account/1/deposit", json={"amount": "lots"})
        assert r.status_code == 422

    def test_deposit_to_missing_account(self, client):
        r = client.post("/account/77/deposit", json={"amount": 10})
        assert r.status_code == 404

    def test_withdraw(self, client):
        create(client)
        client.post("/account/1/deposit", json={"amount": 100})

        r = client.post("/account/1/withdraw", json={"amount": 5})
        assert r.status_code == 200
        assert r.json()["balance"] == 95

    def test_withdraw_overdraw(self, client):
        create(client)
        client.post("/account/1/deposit", json={"amount": 10})

        r = client.post("/account/1/withdraw", json={"amount": 11})
        assert r.status_code == 422
        assert "Insufficient funds" in r.json()["detail"]
        assert client.get("/account/1").json()["balance"] == 10

    def test_send(self, client):
        create(client, "Mr. White")
        create(client, "Mr. Gray")
        client.post("/account/1/deposit", json={"amount": 100})

        r = client.post("/account/1/send", json={"amount": 50, "account-number": 2})
        assert r.status_code == 200
        assert r.json() == {"account-number": 1, "name": "Mr. White", "balance": 50}
        assert client.get("/account/2").json()["balance"] == 50

    def test_send_accepts_snake_case_receiver(self, client):
        create(client)
        create(client)
        client.post("/account/1/deposit", json={"amount": 100})

        r = client.post("/account/1/send", json={"amount": 10, "account_number": 2})
        assert r.status_code == 200
        assert r.json()["balance"] == 90

    def test_send_to_self(self, client):
        create(client)
        client.post("/account/1/deposit", json={"amount": 100})

        r = client.post("/account/1/send", json={"amount": 50, "account-number": 1})
        assert r.status_code == 400

    def test_send_to_missing_receiver(self, client):
        create(client)
        client.post("/account/1/deposit", json={"amount": 100})

        r = client.post("/account/1/send", json={"amount": 50, "account-number": 900})
        assert r.status_code == 404
        assert "Receiver" in r.json()["detail"]

    def test_send_overdraw(self, client):
        create(client)
        create(client)

        r = client.post("/account/1/send", json={"amount": 1, "account-number": 2})
        assert r.status_code == 422


class TestAuditEndpoint:
    """Audit log over HTTP"""

    def test_audit_log(self, client, system):
        create(client)
        system.ledger.create_account("Mr. Gray", account_number=800)
        system.ledger.create_account("Mr. Green", account_number=900)
        system.ledger.deposit(800, 1000)

        client.post("/account/1/deposit", json={"amount": 100})
        client.post("/account/1/send", json={"amount": 5, "account-number": 900})
        client.post("/account/800/send", json={"amount": 10, "account-number": 1})
        client.post("/account/1/withdraw", json={"amount": 20})

        r = client.get("/account/1/audit")
        assert r.status_code == 200
        assert r.json() == [
            {"sequence": 3, "debit": 20, "description": "withdraw"},
            {"sequence": 2, "credit": 10, "description": "receive from #800"},
            {"sequence": 1, "debit": 5, "description": "send to #900"},
            {"sequence": 0, "credit": 100, "description": "deposit"},
        ]

    def test_audit_limit(self, client):
        create(client)
        for amount in (1, 2, 3):
            client.post("/account/1/deposit", json={"amount": amount})

        r = client.get("/account/1/audit", params={"limit": 1})
        assert r.json() == [{"sequence": 2, "credit": 3, "description": "deposit"}]

    @pytest.mark.parametrize("limit", [0, -3])
    def test_audit_non_positive_limit(self, client, limit):
        create(client)
        client.post("/account/1/deposit", json={"amount": 1})

        r = client.get("/account/1/audit", params={"limit": limit})
        assert r.status_code == 422

    def test_audit_max_records(self, system):
        app = create_app(system=system, config=make_config(audit_max_records=2))
        with TestClient(app) as capped:
            create(capped)
            for amount in (1, 2, 3):
                capped.post("/account/1/deposit", json={"amount": amount})

            assert len(capped.get("/account/1/audit").json()) == 2
            assert len(capped.get("/account/1/audit", params={"limit": 1}).json()) == 1

    def test_audit_missing_account(self, client):
        r = client.get("/account/5/audit")
        assert r.status_code == 404


class TestFailureMapping:
    """Conflicts and storage failures"""

    def _stale_reads(self, system, monkeypatch):
        system.ledger.create_account("Mr. Black")
        stale = system.accounts.get(1)
        system.ledger.deposit(1, 10)
        monkeypatch.setattr(system.accounts, "get", lambda number: stale)

    def test_conflict_without_retries(self, system, monkeypatch):
        app = create_app(system=system, config=make_config(conflict_retries=0))
        self._stale_reads(system, monkeypatch)

        with TestClient(app) as client:
            r = client.post("/account/1/deposit", json={"amount": 10})

        assert r.status_code == 409
        assert system.store.get(1)["balance"] == 10

    def test_conflict_retried_by_dispatcher(self, system, monkeypatch):
        app = create_app(system=system, config=make_config(conflict_retries=3))
        system.ledger.create_account("Mr. Black")
        stale = system.accounts.get(1)
        system.ledger.deposit(1, 10)

        real_get = system.accounts.get
        calls = {"count": 0}

        def stale_once(number):
            calls["count"] += 1
            return stale if calls["count"] == 1 else real_get(number)

        monkeypatch.setattr(system.accounts, "get", stale_once)

        with TestClient(app) as client:
            r = client.post("/account/1/deposit", json={"amount": 10})

        assert r.status_code == 200
        assert r.json()["balance"] == 20

    def test_storage_failure(self, tmp_path):
        store = SQLiteDocumentStore(tmp_path / "ledger.db")
        store.close()
        app = create_app(system=LedgerSystem(store), config=make_config())

        with TestClient(app) as client:
            r = client.get("/account/1")

        assert r.status_code == 500


def test_app_owns_store_built_from_config(tmp_path):
    """Without an injected system the app builds its own from configuration"""
    config = make_config(storage_backend="sqlite", database_path=str(tmp_path / "api.db"))

    with TestClient(create_app(config=config)) as client:
        create(client)
        client.post("/account/1/deposit", json={"amount": 42})

    # Data survives an application restart
    with TestClient(create_app(config=config)) as client:
        assert client.get("/account/1").json()["balance"] == 42

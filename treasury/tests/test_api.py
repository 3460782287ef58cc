"""HTTP contract tests for the treasury API."""

import threading
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from treasury.api import create_app
from treasury.service import LedgerService
from treasury.storage import InMemoryStorage

ALICE = {"X-Citizen-Id": "u-alice", "X-Citizen-Email": "alice@vandehoeken.org"}
BOB = {"X-Citizen-Id": "u-bob", "X-Citizen-Email": "bob@vandehoeken.org"}
ADMIN = {"X-Citizen-Id": "u-admin", "X-Citizen-Email": "minister@vandehoeken.gov"}


@pytest.fixture
def client(service, settings):
    return TestClient(create_app(service=service, settings=settings))


def open_account(client, headers, amount=None):
    account = client.get("/accounts/me", headers=headers).json()
    if amount:
        response = client.post(
            f"/admin/accounts/{account['vnt_id']}/adjustments",
            json={"amount": amount, "description": "Opening balance"},
            headers=ADMIN,
        )
        assert response.status_code == 200
    return account


class TestAccounts:
    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_requires_identity(self, client):
        response = client.get("/accounts/me")

        assert response.status_code == 401

    def test_account_opened_on_first_visit(self, client):
        first = client.get("/accounts/me", headers=ALICE)
        second = client.get("/accounts/me", headers=ALICE)

        assert first.status_code == 200
        assert first.json()["vnt_id"] == second.json()["vnt_id"]
        assert first.json()["citizen_id"] == "alice@vandehoeken.org"
        assert Decimal(first.json()["balance"]) == 0

    def test_lookup(self, client):
        account = open_account(client, BOB)

        assert client.get(f"/accounts/{account['vnt_id']}", headers=ALICE).status_code == 200
        assert client.get("/accounts/VNT-0-NONE", headers=ALICE).status_code == 404


class TestTransfers:
    def test_transfer_and_history(self, client):
        open_account(client, ALICE, 100)
        bob = open_account(client, BOB)

        response = client.post(
            "/transfers",
            json={"to_vnt_id": bob["vnt_id"], "amount": 40, "description": "rent"},
            headers=ALICE,
        )

        assert response.status_code == 201
        body = response.json()
        assert Decimal(body["account"]["balance"]) == 60
        assert body["transaction"]["type"] == "transfer_sent"
        assert body["transaction"]["status"] == "completed"

        history = client.get("/accounts/me/transactions", headers=BOB).json()
        assert Decimal(history["balance"]) == 40
        assert [t["description"] for t in history["transactions"]] == ["rent"]

    def test_error_mapping(self, client):
        alice = open_account(client, ALICE, 10)
        bob = open_account(client, BOB)

        too_much = client.post("/transfers", json={"to_vnt_id": bob["vnt_id"], "amount": 11}, headers=ALICE)
        to_self = client.post("/transfers", json={"to_vnt_id": alice["vnt_id"], "amount": 1}, headers=ALICE)
        zero = client.post("/transfers", json={"to_vnt_id": bob["vnt_id"], "amount": 0}, headers=ALICE)
        nobody = client.post("/transfers", json={"to_vnt_id": "VNT-0-NONE", "amount": 1}, headers=ALICE)

        assert too_much.status_code == 409
        assert "transfer failed" in too_much.json()["detail"]
        assert to_self.status_code == 400
        assert zero.status_code == 400
        assert nobody.status_code == 404

    def test_idempotent_retry(self, client):
        open_account(client, ALICE, 100)
        bob = open_account(client, BOB)
        payload = {"to_vnt_id": bob["vnt_id"], "amount": 25, "idempotency_key": "gift-1"}

        first = client.post("/transfers", json=payload, headers=ALICE).json()
        second = client.post("/transfers", json=payload, headers=ALICE).json()

        assert first["transaction"]["id"] == second["transaction"]["id"]
        assert Decimal(second["account"]["balance"]) == 75

    def test_key_reused_with_different_amount_conflicts(self, client):
        open_account(client, ALICE, 100)
        bob = open_account(client, BOB)
        client.post("/transfers", json={"to_vnt_id": bob["vnt_id"], "amount": 25, "idempotency_key": "gift-2"}, headers=ALICE)

        response = client.post(
            "/transfers", json={"to_vnt_id": bob["vnt_id"], "amount": 5, "idempotency_key": "gift-2"}, headers=ALICE
        )

        assert response.status_code == 409
        assert Decimal(client.get("/accounts/me", headers=ALICE).json()["balance"]) == 75


class TestMarketplace:
    def test_purchase_until_sold_out(self, client):
        open_account(client, ALICE, 25)
        item = client.post(
            "/admin/marketplace/items",
            json={"name": "Flag", "price": 25, "stock": 1},
            headers=ADMIN,
        ).json()

        bought = client.post(f"/marketplace/items/{item['id']}/purchase", headers=ALICE)
        again = client.post(f"/marketplace/items/{item['id']}/purchase", headers=ALICE)

        assert bought.status_code == 200
        assert Decimal(bought.json()["account"]["balance"]) == 0
        assert again.status_code == 409
        assert client.get("/marketplace/items").json()[0]["stock"] == 0


class TestAdmin:
    def test_admin_routes_require_admin(self, client):
        assert client.get("/admin/accounts", headers=ALICE).status_code == 403
        assert client.get("/admin/accounts").status_code == 401

    def test_payroll_run(self, client):
        open_account(client, BOB, 10)
        for citizen, salary in (("alice@vandehoeken.org", 50), ("bob@vandehoeken.org", 75)):
            response = client.post(
                "/admin/job-assignments",
                json={"citizen_id": citizen, "job_title": "Clerk", "daily_salary": salary},
                headers=ADMIN,
            )
            assert response.status_code == 201

        report = client.post("/admin/payroll/runs", json={"period": "2024-06-01"}, headers=ADMIN).json()

        assert [r["outcome"] for r in report["results"]] == ["paid", "paid"]
        assert Decimal(client.get("/accounts/me", headers=ALICE).json()["balance"]) == 50
        assert Decimal(client.get("/accounts/me", headers=BOB).json()["balance"]) == 85

        transactions = client.get("/admin/transactions", headers=ADMIN).json()
        salaries = [t for t in transactions if t["description"] == "Daily salary: Clerk"]
        assert len(salaries) == 2

    def test_terminate_and_update_salary(self, client):
        assignment = client.post(
            "/admin/job-assignments",
            json={"citizen_id": "alice@vandehoeken.org", "job_title": "Clerk", "daily_salary": 20},
            headers=ADMIN,
        ).json()

        updated = client.patch(
            f"/admin/job-assignments/{assignment['id']}/salary",
            json={"daily_salary": 30},
            headers=ADMIN,
        )
        terminated = client.post(f"/admin/job-assignments/{assignment['id']}/terminate", headers=ADMIN)

        assert Decimal(updated.json()["daily_salary"]) == 30
        assert terminated.json()["status"] == "terminated"
        active = client.get("/admin/job-assignments", params={"status_filter": "active"}, headers=ADMIN).json()
        assert active == []


class TestStorageContention:
    @pytest.fixture
    def busy(self, notifier, settings):
        storage = InMemoryStorage(lock_timeout=0.05)
        service = LedgerService(storage=storage, notifier=notifier, settings=settings)
        client = TestClient(create_app(service=service, settings=settings))
        holding = threading.Event()
        release = threading.Event()

        def hold():
            with storage.atomic():
                holding.set()
                release.wait(2)

        holder = threading.Thread(target=hold)
        holder.start()
        holding.wait(2)
        yield client
        release.set()
        holder.join()

    @pytest.mark.parametrize(
        "method, path, body",
        [
            ("get", "/marketplace/items", None),
            ("get", "/admin/accounts", None),
            ("get", "/admin/transactions", None),
            ("get", "/admin/job-assignments", None),
            ("post", "/admin/payroll/runs", {"period": "2024-06-01"}),
        ],
    )
    def test_locked_storage_is_service_unavailable(self, busy, method, path, body):
        response = busy.request(method, path, json=body, headers=ADMIN)

        assert response.status_code == 503

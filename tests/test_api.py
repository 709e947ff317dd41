"""API Tests

Drives the FastAPI app in-process through httpx's ASGI transport.
"""

import httpx
import pytest

from escrow_ledger.api import create_app, status_for
from escrow_ledger.config import Settings
from escrow_ledger.container import build_container
from escrow_ledger.core.exceptions import (
    DuplicateIdempotencyKey,
    InsufficientFunds,
    LedgerError,
    TaskNotFound,
    TerminalStateViolation,
)

POSTER = {"X-Actor-Id": "poster"}
EXECUTOR = {"X-Actor-Id": "executor"}
ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}
GATEWAY = {"X-Actor-Id": "gateway", "X-Actor-Role": "system"}


@pytest.fixture
def settings() -> Settings:
    return Settings(storage_backend="memory", redis_url=None, webhook_url=None)


@pytest.fixture
async def client(settings):
    app = create_app(container=build_container(settings), settings=settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def funded(client):
    """Poster with 1000 available and an empty executor account"""
    for headers in (POSTER, EXECUTOR):
        response = await client.post("/api/v1/accounts", headers=headers)
        assert response.status_code == 201
    response = await client.post(
        "/api/v1/wallet/deposits",
        json={"user_id": "poster", "amount": 1000, "external_reference": "gw-1"},
        headers=GATEWAY,
    )
    assert response.status_code == 200


async def _post_task(client, budget=400, **extra) -> dict:
    response = await client.post(
        "/api/v1/tasks",
        json={"base_budget": budget, "title": "Logo design", **extra},
        headers=POSTER,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def _balances(client, headers) -> tuple[int, int]:
    body = (await client.get("/api/v1/accounts/me", headers=headers)).json()
    return body["available_balance"], body["escrow_balance"]


# ============================================================================
# Basics
# ============================================================================


async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"status": "healthy"}


def test_error_status_mapping():
    assert status_for(InsufficientFunds("x")) == 402
    assert status_for(TerminalStateViolation("x")) == 409
    assert status_for(DuplicateIdempotencyKey("x")) == 409
    assert status_for(TaskNotFound("x")) == 404
    assert status_for(LedgerError("x")) == 500


async def test_actor_header_required(client):
    response = await client.get("/api/v1/accounts/me")
    assert response.status_code == 422


async def test_unknown_role(client):
    response = await client.get(
        "/api/v1/accounts/me", headers={"X-Actor-Id": "x", "X-Actor-Role": "root"}
    )
    assert response.status_code == 400


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.usefixtures("funded")
class TestTaskFlow:
    async def test_full_release(self, client):
        task = await _post_task(client)
        task_id = task["task_id"]
        assert task["status"] == "OPEN"
        assert await _balances(client, POSTER) == (600, 400)

        offer = (
            await client.post(
                f"/api/v1/tasks/{task_id}/offers", json={"price": 380}, headers=EXECUTOR
            )
        ).json()
        assert offer["status"] == "PENDING"

        response = await client.post(
            f"/api/v1/tasks/{task_id}/offers/{offer['offer_id']}/accept", headers=POSTER
        )
        assert response.json()["status"] == "ASSIGNED"

        response = await client.post(
            f"/api/v1/tasks/{task_id}/actions/start_work", headers=EXECUTOR
        )
        assert response.json()["status"] == "IN_PROGRESS"

        response = await client.post(
            f"/api/v1/tasks/{task_id}/proofs",
            json={
                "kind": "final",
                "attachment_id": "att-1",
                "name": "logo.svg",
                "url": "https://files/logo.svg",
            },
            headers=EXECUTOR,
        )
        assert response.json()["proofs"]["final"][0]["name"] == "logo.svg"

        response = await client.post(
            f"/api/v1/tasks/{task_id}/actions/submit_completion", headers=EXECUTOR
        )
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["auto_approve_at"] is not None

        response = await client.post(
            f"/api/v1/tasks/{task_id}/actions/release_payment", headers=POSTER
        )
        assert response.json()["status"] == "PAID"
        assert await _balances(client, EXECUTOR) == (380, 0)

        fees = await client.get("/api/v1/platform/fees", headers=ADMIN)
        assert fees.json() == {"total_fees": 20}

        history = (
            await client.get("/api/v1/accounts/me/transactions", headers=EXECUTOR)
        ).json()
        assert [(tx["type"], tx["amount"], tx["fee"]) for tx in history] == [
            ("PAYMENT_RELEASE", 380, 20)
        ]

        again = await client.post(
            f"/api/v1/tasks/{task_id}/actions/release_payment", headers=POSTER
        )
        assert again.status_code == 409
        assert again.json()["error"] == "TERMINAL_STATE"

    async def test_cancel_refunds(self, client):
        task = await _post_task(client)

        response = await client.post(
            f"/api/v1/tasks/{task['task_id']}/actions/cancel", headers=POSTER
        )

        assert response.json()["status"] == "CANCELLED"
        assert await _balances(client, POSTER) == (1000, 0)

    async def test_dispute_resolution(self, client):
        task_id = (await _post_task(client))["task_id"]
        offer = (
            await client.post(
                f"/api/v1/tasks/{task_id}/offers", json={"price": 400}, headers=EXECUTOR
            )
        ).json()
        await client.post(
            f"/api/v1/tasks/{task_id}/offers/{offer['offer_id']}/accept", headers=POSTER
        )
        await client.post(f"/api/v1/tasks/{task_id}/actions/start_work", headers=EXECUTOR)
        await client.post(f"/api/v1/tasks/{task_id}/actions/raise_dispute", headers=POSTER)

        queue = await client.get("/api/v1/tasks/disputed", headers=ADMIN)
        assert [t["task_id"] for t in queue.json()["tasks"]] == [task_id]

        response = await client.post(
            f"/api/v1/tasks/{task_id}/actions/resolve_dispute",
            json={"decision": "PAY_EXECUTOR"},
            headers=ADMIN,
        )
        assert response.json()["status"] == "PAID"
        assert await _balances(client, EXECUTOR) == (380, 0)

    async def test_list_tasks(self, client):
        task = await _post_task(client, service_tier="URGENT")
        assert task["budget"] == 600

        response = await client.get("/api/v1/tasks", params={"poster_id": "poster"})
        body = response.json()
        assert body["total"] == 1
        assert body["tasks"][0]["service_tier"] == "URGENT"

    async def test_reject_offer(self, client):
        task_id = (await _post_task(client))["task_id"]
        offer = (
            await client.post(
                f"/api/v1/tasks/{task_id}/offers", json={"price": 400}, headers=EXECUTOR
            )
        ).json()

        response = await client.post(
            f"/api/v1/tasks/{task_id}/offers/{offer['offer_id']}/reject", headers=POSTER
        )
        assert response.json()["status"] == "REJECTED"

        listed = (await client.get(f"/api/v1/tasks/{task_id}/offers")).json()
        assert [o["status"] for o in listed] == ["REJECTED"]


# ============================================================================
# Errors
# ============================================================================


@pytest.mark.usefixtures("funded")
class TestErrors:
    async def test_insufficient_funds(self, client):
        response = await client.post(
            "/api/v1/tasks",
            json={"base_budget": 5000, "title": "Too expensive"},
            headers=POSTER,
        )
        assert response.status_code == 402
        body = response.json()
        assert body["error"] == "INSUFFICIENT_FUNDS"
        assert body["details"]["required"] == 5000

    async def test_unknown_task(self, client):
        response = await client.get("/api/v1/tasks/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "TASK_NOT_FOUND"

    async def test_unknown_action(self, client):
        task = await _post_task(client)
        response = await client.post(
            f"/api/v1/tasks/{task['task_id']}/actions/teleport", headers=POSTER
        )
        assert response.status_code == 422

    async def test_wrong_state(self, client):
        task = await _post_task(client)
        response = await client.post(
            f"/api/v1/tasks/{task['task_id']}/actions/release_payment", headers=POSTER
        )
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE"

    async def test_proof_required(self, client):
        task_id = (await _post_task(client))["task_id"]
        offer = (
            await client.post(
                f"/api/v1/tasks/{task_id}/offers", json={"price": 400}, headers=EXECUTOR
            )
        ).json()
        await client.post(
            f"/api/v1/tasks/{task_id}/offers/{offer['offer_id']}/accept", headers=POSTER
        )
        await client.post(f"/api/v1/tasks/{task_id}/actions/start_work", headers=EXECUTOR)

        response = await client.post(
            f"/api/v1/tasks/{task_id}/actions/submit_completion", headers=EXECUTOR
        )
        assert response.status_code == 422
        assert response.json()["error"] == "PROOF_REQUIRED"

    async def test_poster_offer_forbidden(self, client):
        task = await _post_task(client)
        response = await client.post(
            f"/api/v1/tasks/{task['task_id']}/offers", json={"price": 400}, headers=POSTER
        )
        assert response.status_code == 403

    async def test_deposit_requires_system_role(self, client):
        response = await client.post(
            "/api/v1/wallet/deposits",
            json={"user_id": "poster", "amount": 1000000, "external_reference": "forged"},
            headers=POSTER,
        )
        assert response.status_code == 403
        assert await _balances(client, POSTER) == (1000, 0)

    async def test_disputed_queue_requires_admin(self, client):
        response = await client.get("/api/v1/tasks/disputed", headers=POSTER)
        assert response.status_code == 403

    async def test_instant_withdrawal(self, client):
        response = await client.post(
            "/api/v1/wallet/withdrawals",
            json={"amount": 500, "instant": True, "request_id": "wd-1"},
            headers=POSTER,
        )
        assert response.status_code == 200
        assert response.json()["fee"] == 10
        assert await _balances(client, POSTER) == (500, 0)

    async def test_auto_release_requires_scheduler(self, client):
        assert (await client.post("/api/v1/tasks/auto-release", headers=POSTER)).status_code == 403
        response = await client.post("/api/v1/tasks/auto-release", headers=GATEWAY)
        assert response.json() == {"tasks": [], "total": 0}

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from directory_api.main import app
from directory_api.services.repository import (
    MachineCredentialRecord,
    RepositoryConflictError,
    RepositoryNotFoundError,
    get_repository,
)

WORKER_KEY = "worker-secret"


def _pending(notification_id: str, agency_email: str | None) -> dict[str, Any]:
    return {
        "id": notification_id,
        "labor_request_id": "50000000-0000-0000-0000-000000000001",
        "craft_id": "60000000-0000-0000-0000-000000000001",
        "agency_id": "70000000-0000-0000-0000-000000000001",
        "created_at": datetime(2026, 5, 1, tzinfo=timezone.utc),
        "agency": {"name": "Prairie Trades", "slug": "prairie-trades", "email": agency_email},
        "labor_request": {"project_name": "Wind Farm", "company_name": "Plains Power"},
        "craft": {"trade_name": "Electrician", "region_name": "Kansas", "worker_count": 6},
    }


class FakeDispatchRepository:
    def __init__(self, scopes: list[str] | None = None) -> None:
        self.scopes = scopes if scopes is not None else ["notifications:read", "notifications:write"]
        self.pending = {
            "80000000-0000-0000-0000-000000000001": _pending("80000000-0000-0000-0000-000000000001", "jobs@prairie.example.com"),
            "80000000-0000-0000-0000-000000000002": _pending("80000000-0000-0000-0000-000000000002", None),
        }
        self.resolved: dict[str, dict[str, Any]] = {}
        self.requested_limits: list[int] = []

    async def get_machine_credentials(self, module_id: str) -> list[MachineCredentialRecord]:
        if module_id != "notification-worker":
            return []
        return [
            MachineCredentialRecord(
                module_db_id="90000000-0000-0000-0000-000000000001",
                module_id=module_id,
                scopes=self.scopes,
                key_hash=hashlib.sha256(WORKER_KEY.encode("utf-8")).hexdigest(),
            )
        ]

    async def list_pending_notifications(self, *, limit: int) -> list[dict[str, Any]]:
        self.requested_limits.append(limit)
        return list(self.pending.values())[:limit]

    async def resolve_notification(self, *, notification_id: str, status: str, delivery_error: str | None) -> dict[str, Any]:
        if notification_id in self.resolved:
            raise RepositoryConflictError("notification already resolved with status: sent")
        if notification_id not in self.pending:
            raise RepositoryNotFoundError("notification not found")
        self.pending.pop(notification_id)
        row = {
            "id": notification_id,
            "status": status,
            "sent_at": datetime.now(timezone.utc) if status == "sent" else None,
            "delivery_error": delivery_error,
        }
        self.resolved[notification_id] = row
        return row


WORKER_HEADERS = {"X-Module-Id": "notification-worker", "X-API-Key": WORKER_KEY}
BASE = "/api/dispatch/labor-request-notifications"


def _client_for(repo: FakeDispatchRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repo
    return TestClient(app)


@pytest.fixture(autouse=True)
def _clear_overrides() -> None:
    yield
    app.dependency_overrides.clear()


def test_worker_lists_pending_notifications() -> None:
    repo = FakeDispatchRepository()
    response = _client_for(repo).get(BASE, params={"limit": 10}, headers=WORKER_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body] == list(repo.pending)
    assert body[0]["agency"]["email"] == "jobs@prairie.example.com"
    assert repo.requested_limits == [10]


def test_missing_machine_headers_is_unauthorized() -> None:
    response = _client_for(FakeDispatchRepository()).get(BASE)
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_wrong_api_key_is_unauthorized() -> None:
    response = _client_for(FakeDispatchRepository()).get(
        BASE, headers={"X-Module-Id": "notification-worker", "X-API-Key": "guess"}
    )
    assert response.status_code == 401


def test_unknown_module_is_unauthorized() -> None:
    response = _client_for(FakeDispatchRepository()).get(
        BASE, headers={"X-Module-Id": "someone-else", "X-API-Key": WORKER_KEY}
    )
    assert response.status_code == 401


def test_missing_scope_is_forbidden() -> None:
    repo = FakeDispatchRepository(scopes=["notifications:read"])
    notification_id = next(iter(repo.pending))
    response = _client_for(repo).post(f"{BASE}/{notification_id}/result", json={"status": "sent"}, headers=WORKER_HEADERS)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"
    assert repo.resolved == {}


def test_limit_out_of_range_is_rejected() -> None:
    response = _client_for(FakeDispatchRepository()).get(BASE, params={"limit": 500}, headers=WORKER_HEADERS)
    assert response.status_code == 400


def test_report_sent_then_conflict_on_repeat() -> None:
    repo = FakeDispatchRepository()
    client = _client_for(repo)
    notification_id = "80000000-0000-0000-0000-000000000001"

    first = client.post(f"{BASE}/{notification_id}/result", json={"status": "sent"}, headers=WORKER_HEADERS)
    second = client.post(f"{BASE}/{notification_id}/result", json={"status": "sent"}, headers=WORKER_HEADERS)

    assert first.status_code == 200
    assert first.json()["status"] == "sent"
    assert first.json()["sent_at"] is not None
    assert second.status_code == 409


def test_report_failed_keeps_delivery_error() -> None:
    repo = FakeDispatchRepository()
    notification_id = "80000000-0000-0000-0000-000000000002"
    response = _client_for(repo).post(
        f"{BASE}/{notification_id}/result",
        json={"status": "failed", "delivery_error": "no_email_address"},
        headers=WORKER_HEADERS,
    )

    assert response.status_code == 200
    assert repo.resolved[notification_id]["delivery_error"] == "no_email_address"


def test_sent_result_drops_delivery_error() -> None:
    repo = FakeDispatchRepository()
    notification_id = "80000000-0000-0000-0000-000000000001"
    _client_for(repo).post(
        f"{BASE}/{notification_id}/result",
        json={"status": "sent", "delivery_error": "ignored"},
        headers=WORKER_HEADERS,
    )
    assert repo.resolved[notification_id]["delivery_error"] is None


def test_unknown_notification_returns_404() -> None:
    response = _client_for(FakeDispatchRepository()).post(
        f"{BASE}/80000000-0000-0000-0000-000000000099/result",
        json={"status": "sent"},
        headers=WORKER_HEADERS,
    )
    assert response.status_code == 404


def test_result_status_must_be_terminal() -> None:
    response = _client_for(FakeDispatchRepository()).post(
        f"{BASE}/80000000-0000-0000-0000-000000000001/result",
        json={"status": "viewed"},
        headers=WORKER_HEADERS,
    )
    assert response.status_code == 400

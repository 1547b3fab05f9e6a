from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

from directory_api.main import app
from directory_api.services.repository import RepositoryError, RepositoryNotFoundError, get_repository

ELECTRICIAN = "a1000000-0000-0000-0000-000000000001"
WELDER = "a1000000-0000-0000-0000-000000000002"
TEXAS = "b2000000-0000-0000-0000-000000000001"
LOUISIANA = "b2000000-0000-0000-0000-000000000002"


class FakeLaborRequestRepository:
    def __init__(self) -> None:
        self.requests: dict[str, dict[str, Any]] = {}
        self.crafts: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.coverage = {
            (ELECTRICIAN, TEXAS): ["agency-1", "agency-2"],
            (WELDER, LOUISIANA): ["agency-3"],
        }
        self.fail_crafts = False
        self.fail_notifications_for: set[str] = set()
        self.deleted: list[str] = []
        self.confirmations: dict[str, dict[str, Any]] = {}

    async def create_labor_request(self, **fields: Any) -> dict[str, Any]:
        request_id = f"c3000000-0000-0000-0000-{len(self.requests) + 1:012d}"
        self.requests[request_id] = fields
        return {
            "id": request_id,
            "confirmation_token": fields["confirmation_token"],
            "created_at": datetime.now(timezone.utc),
        }

    async def create_labor_request_crafts(self, *, labor_request_id: str, crafts: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.fail_crafts:
            raise RepositoryError("crafts insert failed")
        created = []
        for craft in crafts:
            row = {"id": f"craft-{len(self.crafts) + 1}", "trade_id": craft["trade_id"], "region_id": craft["region_id"]}
            self.crafts.append({**craft, **row, "labor_request_id": labor_request_id})
            created.append(row)
        return created

    async def delete_labor_request(self, labor_request_id: str) -> None:
        self.deleted.append(labor_request_id)
        self.requests.pop(labor_request_id, None)

    async def match_agencies(self, *, trade_id: str, region_id: str) -> list[dict[str, Any]]:
        return [{"id": agency_id, "name": agency_id} for agency_id in self.coverage.get((trade_id, region_id), [])]

    async def create_labor_request_notifications(self, *, labor_request_id: str, craft_id: str, agency_ids: list[str]) -> int:
        if craft_id in self.fail_notifications_for:
            raise RepositoryError("notification insert failed")
        for agency_id in agency_ids:
            self.notifications.append({"labor_request_id": labor_request_id, "craft_id": craft_id, "agency_id": agency_id})
        return len(agency_ids)

    async def get_labor_request_by_token(self, token: str) -> dict[str, Any]:
        if token not in self.confirmations:
            raise RepositoryNotFoundError("labor request not found")
        return dict(self.confirmations[token])


@pytest.fixture
def repo() -> FakeLaborRequestRepository:
    return FakeLaborRequestRepository()


@pytest.fixture
def labor_client(repo: FakeLaborRequestRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repo
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def _craft(trade_id: str = ELECTRICIAN, region_id: str = TEXAS, **overrides: Any) -> dict[str, Any]:
    craft = {
        "tradeId": trade_id,
        "regionId": region_id,
        "experienceLevel": "Journeyman",
        "workerCount": 5,
        "startDate": (date.today() + timedelta(days=14)).isoformat(),
        "durationDays": 30,
        "hoursPerWeek": 40,
        "payRateMin": 35,
        "payRateMax": 45,
    }
    craft.update(overrides)
    return craft


def _request(*crafts: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    payload = {
        "projectName": "Downtown Office Complex",
        "companyName": "ABC Construction",
        "contactEmail": " Project@ABC-Construction.com ",
        "contactPhone": "(650) 253-0000",
        "additionalDetails": "Union site, badging required.",
        "crafts": list(crafts) or [_craft()],
    }
    payload.update(overrides)
    return payload


def test_create_labor_request_matches_and_queues_notifications(
    labor_client: TestClient,
    repo: FakeLaborRequestRepository,
) -> None:
    response = labor_client.post(
        "/api/labor-requests",
        json=_request(_craft(), _craft(WELDER, LOUISIANA, payRateMin=None, payRateMax=None)),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["totalMatches"] == 3
    assert body["matchesByCraft"] == [{"craftId": "craft-1", "matches": 2}, {"craftId": "craft-2", "matches": 1}]
    assert len(body["confirmationToken"]) == 64
    assert "notificationWarning" not in body
    assert len(repo.notifications) == 3
    stored = repo.requests[body["requestId"]]
    assert stored["contact_email"] == "project@abc-construction.com"
    assert stored["confirmation_token"] == body["confirmationToken"]
    assert stored["confirmation_token_expires"] > datetime.now(timezone.utc) + timedelta(hours=23)


def test_create_labor_request_without_matches(labor_client: TestClient, repo: FakeLaborRequestRepository) -> None:
    response = labor_client.post("/api/labor-requests", json=_request(_craft(WELDER, TEXAS)))

    assert response.status_code == 201
    assert response.json()["totalMatches"] == 0
    assert repo.notifications == []


def test_crafts_failure_removes_request(labor_client: TestClient, repo: FakeLaborRequestRepository) -> None:
    repo.fail_crafts = True
    response = labor_client.post("/api/labor-requests", json=_request())

    assert response.status_code == 500
    assert response.json()["error"] == {"code": "DATABASE_ERROR", "message": "Failed to create labor request crafts"}
    assert len(repo.deleted) == 1
    assert repo.requests == {}


def test_notification_failure_is_reported_not_fatal(labor_client: TestClient, repo: FakeLaborRequestRepository) -> None:
    repo.fail_notifications_for = {"craft-1"}
    response = labor_client.post("/api/labor-requests", json=_request())

    assert response.status_code == 201
    body = response.json()
    assert body["notificationWarning"]
    assert body["notificationErrors"][0]["craftId"] == "craft-1"


@pytest.mark.parametrize(
    ("craft_overrides", "message"),
    [
        ({"startDate": (date.today() - timedelta(days=1)).isoformat()}, "Start date cannot be in the past"),
        ({"startDate": (date.today() + timedelta(days=400)).isoformat()}, "more than 1 year"),
        ({"startDate": "03/15/2030"}, "YYYY-MM-DD"),
        ({"payRateMax": None}, "Both minimum and maximum pay rates"),
        ({"payRateMin": 50, "payRateMax": 40}, "less than or equal to maximum"),
    ],
)
def test_invalid_craft_is_rejected(labor_client: TestClient, craft_overrides: dict[str, Any], message: str) -> None:
    response = labor_client.post("/api/labor-requests", json=_request(_craft(**craft_overrides)))

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert any(message in detail for detail in error["details"].values())


def test_duplicate_trade_region_pair_is_rejected(labor_client: TestClient) -> None:
    response = labor_client.post("/api/labor-requests", json=_request(_craft(), _craft(workerCount=2)))

    assert response.status_code == 400
    details = response.json()["error"]["details"]
    assert any("unique trade and region" in detail for detail in details.values())


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("contactPhone", "555-0100"),
        ("contactEmail", "no-at-sign"),
        ("projectName", "ab"),
        ("crafts", []),
    ],
)
def test_invalid_request_fields(labor_client: TestClient, repo: FakeLaborRequestRepository, field: str, value: Any) -> None:
    response = labor_client.post("/api/labor-requests", json=_request(**{field: value}))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert repo.requests == {}


CONFIRMATION_TOKEN = "ab" * 32


def _confirmation(expires_in: timedelta) -> dict[str, Any]:
    return {
        "id": "c3000000-0000-0000-0000-000000000001",
        "project_name": "Refinery Turnaround",
        "company_name": "Gulf Builders",
        "contact_email": "foreman@gulfbuilders.com",
        "contact_phone": "+17135550142",
        "created_at": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "confirmation_token_expires": datetime.now(timezone.utc) + expires_in,
        "crafts": [
            {"craft_name": "Electrician", "matches": 2},
            {"craft_name": None, "matches": 0},
        ],
    }


def test_confirmation_summary_masks_contacts(labor_client: TestClient, repo: FakeLaborRequestRepository) -> None:
    repo.confirmations[CONFIRMATION_TOKEN] = _confirmation(timedelta(hours=12))

    response = labor_client.get("/api/labor-requests/success", params={"token": CONFIRMATION_TOKEN.upper()})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["request"]["projectName"] == "Refinery Turnaround"
    assert body["request"]["contactEmail"] == "fo***@gulfbuilders.com"
    assert body["request"]["contactPhone"] == "***-***-0142"
    assert body["request"]["craftCount"] == 2
    assert body["matches"] == {
        "total": 2,
        "byCraft": [
            {"craftName": "Electrician", "matches": 2},
            {"craftName": "Unknown Trade", "matches": 0},
        ],
    }


def test_expired_confirmation_token_is_not_found(labor_client: TestClient, repo: FakeLaborRequestRepository) -> None:
    repo.confirmations[CONFIRMATION_TOKEN] = _confirmation(timedelta(seconds=-1))

    response = labor_client.get("/api/labor-requests/success", params={"token": CONFIRMATION_TOKEN})

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Invalid or expired token"


def test_unknown_confirmation_token_is_not_found(labor_client: TestClient) -> None:
    response = labor_client.get("/api/labor-requests/success", params={"token": "cd" * 32})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.parametrize("params", [{}, {"token": "not-a-token"}, {"token": "ab" * 31}])
def test_malformed_confirmation_token_is_rejected(labor_client: TestClient, params: dict[str, str]) -> None:
    response = labor_client.get("/api/labor-requests/success", params=params)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

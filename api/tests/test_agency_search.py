from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from directory_api.main import app
from directory_api.services.repository import RepositoryNotFoundError, get_repository


def _agency(index: int, name: str, trades: list[str], states: list[str]) -> dict[str, Any]:
    return {
        "id": f"70000000-0000-0000-0000-{index:012d}",
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "description": f"{name} supplies skilled trades.",
        "is_claimed": False,
        "is_active": True,
        "claimed_by": "80000000-0000-0000-0000-000000000001",
        "trades": [{"id": f"t-{slug}", "name": slug.title(), "slug": slug} for slug in trades],
        "regions": [{"id": f"r-{code}", "name": code, "code": code} for code in states],
    }


class FakeDirectoryRepository:
    def __init__(self) -> None:
        self.agencies = [
            _agency(1, "Apex Electric Staffing", ["electrician"], ["TX"]),
            _agency(2, "Bayou Welders", ["welder"], ["LA", "TX"]),
            _agency(3, "Cascade Crews", ["electrician", "carpenter"], ["WA"]),
        ]
        self.search_calls: list[dict[str, Any]] = []

    async def search_agencies(
        self,
        *,
        search: str | None,
        trade_slugs: list[str],
        state_codes: list[str],
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        self.search_calls.append(
            {"search": search, "trade_slugs": trade_slugs, "state_codes": state_codes, "limit": limit, "offset": offset}
        )
        rows = self.agencies
        if search:
            rows = [row for row in rows if search.lower() in row["name"].lower()]
        if trade_slugs:
            rows = [row for row in rows if {t["slug"] for t in row["trades"]} & set(trade_slugs)]
        if state_codes:
            rows = [row for row in rows if {r["code"] for r in row["regions"]} & set(state_codes)]
        page = [{key: value for key, value in row.items() if key != "claimed_by"} for row in rows[offset : offset + limit]]
        return page, len(rows)

    async def get_agency_by_slug(self, slug: str, *, active_only: bool = True) -> dict[str, Any]:
        for row in self.agencies:
            if row["slug"] == slug and (row["is_active"] or not active_only):
                return dict(row)
        raise RepositoryNotFoundError("agency not found")


@pytest.fixture
def repo() -> FakeDirectoryRepository:
    return FakeDirectoryRepository()


@pytest.fixture
def directory_client(repo: FakeDirectoryRepository) -> TestClient:
    app.dependency_overrides[get_repository] = lambda: repo
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_search_returns_data_and_pagination(directory_client: TestClient) -> None:
    response = directory_client.get("/api/agencies", params={"limit": 2})

    assert response.status_code == 200
    body = response.json()
    assert [row["name"] for row in body["data"]] == ["Apex Electric Staffing", "Bayou Welders"]
    assert body["pagination"] == {"total": 3, "limit": 2, "offset": 0, "hasMore": True}
    assert response.headers["cache-control"] == "public, max-age=300, must-revalidate"
    assert response.headers["etag"].startswith('"')


def test_search_accepts_bracketed_array_params(directory_client: TestClient, repo: FakeDirectoryRepository) -> None:
    response = directory_client.get("/api/agencies?trades[]=electrician&states[]=tx&states=wa")

    assert response.status_code == 200
    assert repo.search_calls[-1]["trade_slugs"] == ["electrician"]
    assert sorted(repo.search_calls[-1]["state_codes"]) == ["TX", "WA"]
    assert {row["slug"] for row in response.json()["data"]} == {"apex-electric-staffing", "cascade-crews"}


def test_search_term_is_sanitized(directory_client: TestClient, repo: FakeDirectoryRepository) -> None:
    response = directory_client.get("/api/agencies", params={"search": "Bayou'; DROP TABLE agencies;--"})

    assert response.status_code == 200
    assert repo.search_calls[-1]["search"] == "Bayou' TABLE agencies"


def test_matching_etag_returns_not_modified(directory_client: TestClient) -> None:
    first = directory_client.get("/api/agencies")
    etag = first.headers["etag"]

    second = directory_client.get("/api/agencies", headers={"If-None-Match": etag})

    assert second.status_code == 304
    assert second.content == b""
    assert second.headers["etag"] == etag


def test_etag_changes_with_results(directory_client: TestClient) -> None:
    everything = directory_client.get("/api/agencies")
    filtered = directory_client.get("/api/agencies", params={"states": "LA"})
    assert everything.headers["etag"] != filtered.headers["etag"]


@pytest.mark.parametrize(
    ("query", "path"),
    [
        ({"limit": "0"}, ["limit"]),
        ({"limit": "101"}, ["limit"]),
        ({"limit": "ten"}, ["limit"]),
        ({"offset": "-1"}, ["offset"]),
        ({"states": "Texas"}, ["states", 0]),
        ({"search": "x" * 101}, ["search"]),
        ({"trades": [f"trade-{index}" for index in range(11)]}, ["trades"]),
    ],
)
def test_invalid_params_return_issue_list(directory_client: TestClient, query: dict[str, Any], path: list[Any]) -> None:
    response = directory_client.get("/api/agencies", params=query)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_PARAMS"
    assert error["message"] == "Invalid query parameters"
    assert [issue["path"] for issue in error["details"]["issues"]] == [path]


def test_agency_profile_by_slug_hides_owner(directory_client: TestClient) -> None:
    response = directory_client.get("/api/agencies/bayou-welders")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["name"] == "Bayou Welders"
    assert "claimed_by" not in data


def test_agency_profile_missing_slug(directory_client: TestClient) -> None:
    response = directory_client.get("/api/agencies/nobody-here")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "AGENCY_NOT_FOUND"

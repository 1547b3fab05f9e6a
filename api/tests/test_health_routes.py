from typing import Any

from fastapi.testclient import TestClient
import pytest

import directory_api.main as api_main
from directory_api.main import app


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_reports_service_name() -> None:
    client = TestClient(app)
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["service"] == "staffing-directory-api"


def test_unknown_route_uses_error_envelope() -> None:
    client = TestClient(app)
    response = client.get("/api/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_run_serves_app_with_configured_bind(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[Any, dict[str, Any]]] = []
    monkeypatch.setattr(api_main.uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

    api_main.run()

    assert calls == [(app, {"host": api_main.settings.host, "port": api_main.settings.port})]

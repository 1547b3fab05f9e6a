from __future__ import annotations

from typing import Any

import httpx


class DispatchClient:
    """Talks to the API's machine-authenticated notification dispatch endpoints."""

    def __init__(self, base_url: str, module_id: str, api_key: str, timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {
            "X-Module-Id": module_id,
            "X-API-Key": api_key,
        }

    async def get_pending_notifications(self, limit: int = 25) -> list[dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(
                f"{self.base_url}/api/dispatch/labor-request-notifications",
                params={"limit": limit},
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()

    async def submit_result(
        self,
        notification_id: str,
        *,
        status: str,
        delivery_error: str | None = None,
    ) -> dict[str, Any]:
        payload = {"status": status, "delivery_error": delivery_error}
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.base_url}/api/dispatch/labor-request-notifications/{notification_id}/result",
                json=payload,
                headers=self.headers,
            )
            response.raise_for_status()
            return response.json()

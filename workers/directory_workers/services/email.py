from __future__ import annotations

from typing import Any

import httpx


class EmailDeliveryError(Exception):
    def __init__(self, reason: str, detail: str | None = None) -> None:
        super().__init__(detail or reason)
        self.reason = reason


class ResendSender:
    def __init__(self, *, api_key: str | None, base_url: str, from_address: str, timeout_seconds: float = 10.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    async def send(self, *, to: str, subject: str, html: str, text: str) -> str | None:
        """Send one email and return the provider message id.

        Raises EmailDeliveryError with a short machine-readable reason; the
        worker reports that reason back as the notification's delivery error.
        """
        if not self.api_key:
            raise EmailDeliveryError("resend_api_key_missing")

        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/emails",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmailDeliveryError("unexpected_error", str(exc)) from exc

        body = response.json() if response.content else {}
        return body.get("id") if isinstance(body, dict) else None

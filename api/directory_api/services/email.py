from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
from typing import Any

import httpx

from directory_api.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(slots=True)
class EmailResult:
    sent: bool
    reason: str | None = None
    message_id: str | None = None


class ResendEmailClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        from_address: str,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, message: EmailMessage, *, client: httpx.AsyncClient | None = None) -> EmailResult:
        """Deliver one message. Never raises: failures come back as ``EmailResult(sent=False)``."""
        if not self.api_key:
            logger.warning("email skipped subject=%r: resend api key not configured", message.subject)
            return EmailResult(sent=False, reason="resend_api_key_missing")

        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if client is not None:
                response = await client.post(f"{self.base_url}/emails", json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as temp_client:
                    response = await temp_client.post(f"{self.base_url}/emails", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("email delivery failed subject=%r: %s", message.subject, exc)
            return EmailResult(sent=False, reason="unexpected_error")

        if response.status_code >= 400:
            logger.error(
                "email provider rejected subject=%r status=%s body=%s",
                message.subject,
                response.status_code,
                response.text[:500],
            )
            return EmailResult(sent=False, reason="unexpected_error")

        try:
            body = response.json()
        except ValueError:
            body = {}
        return EmailResult(sent=True, message_id=body.get("id") if isinstance(body, dict) else None)


@lru_cache
def get_email_client() -> ResendEmailClient:
    settings = get_settings()
    return ResendEmailClient(
        api_key=settings.resend_api_key,
        base_url=settings.resend_api_base_url,
        from_address=settings.email_from,
        timeout_seconds=settings.email_timeout_seconds,
    )

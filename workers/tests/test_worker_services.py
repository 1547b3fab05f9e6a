from __future__ import annotations

import asyncio

import pytest

from directory_workers.core.telemetry import parse_otlp_headers
from directory_workers.services.dispatch_client import DispatchClient
from directory_workers.services.email import EmailDeliveryError, ResendSender


def test_dispatch_client_builds_machine_headers() -> None:
    client = DispatchClient(base_url="http://api.local/", module_id="notification-worker", api_key="k")

    assert client.base_url == "http://api.local"
    assert client.headers == {"X-Module-Id": "notification-worker", "X-API-Key": "k"}


def test_sender_without_api_key_raises_reason() -> None:
    sender = ResendSender(api_key=None, base_url="https://api.resend.com", from_address="noreply@example.com")

    with pytest.raises(EmailDeliveryError) as excinfo:
        asyncio.run(sender.send(to="a@example.com", subject="s", html="<p>h</p>", text="t"))

    assert excinfo.value.reason == "resend_api_key_missing"


def test_parse_otlp_headers() -> None:
    assert parse_otlp_headers("api-key=abc, x-team = ops,broken") == {"api-key": "abc", "x-team": "ops"}
    assert parse_otlp_headers(None) == {}

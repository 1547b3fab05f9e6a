from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from fastapi.testclient import TestClient

import directory_api.core.security as security
from directory_api.core.config import get_settings
from directory_api.main import app
from directory_api.services.email import EmailResult, get_email_client
from directory_api.services.repository import RepositoryError, RepositoryNotFoundError, get_repository

ALICE = "10000000-aaaa-0000-0000-000000000001"
BOB = "10000000-bbbb-0000-0000-000000000002"
MALLORY = "10000000-cccc-0000-0000-000000000003"
ADMIN = "10000000-dddd-0000-0000-000000000004"
CONVERSATION_ID = "20000000-0000-0000-0000-000000000001"
AGENCY_ID = "30000000-0000-0000-0000-000000000001"


class FakeMessagingRepository:
    def __init__(self) -> None:
        now = datetime.now(timezone.utc)
        self.profiles = {
            ALICE: {"id": ALICE, "role": "user", "email": "alice@example.com", "full_name": "Alice Contractor"},
            BOB: {"id": BOB, "role": "agency_owner", "email": "bob@example.com", "full_name": "Bob Owner"},
            MALLORY: {"id": MALLORY, "role": "user", "email": "mallory@example.com", "full_name": "Mallory"},
            ADMIN: {"id": ADMIN, "role": "admin", "email": "admin@example.com", "full_name": "Admin"},
        }
        self.conversations: dict[str, dict[str, Any]] = {
            CONVERSATION_ID: {
                "id": CONVERSATION_ID,
                "context_type": "general",
                "context_id": None,
                "agency_name": None,
                "last_message_at": now,
                "created_at": now - timedelta(days=1),
                "participant_ids": [ALICE, BOB],
            }
        }
        self.messages: list[dict[str, Any]] = [
            self._message(f"40000000-0000-0000-0000-{index:012d}", BOB, f"message {index}", now - timedelta(minutes=60 - index))
            for index in range(1, 4)
        ]
        self.read_markers: dict[tuple[str, str], datetime] = {}
        self.fail_read_marker = False

    @staticmethod
    def _message(message_id: str, sender_id: str, content: str, created_at: datetime) -> dict[str, Any]:
        return {
            "id": message_id,
            "conversation_id": CONVERSATION_ID,
            "sender_id": sender_id,
            "content": content,
            "created_at": created_at,
            "edited_at": None,
            "deleted_at": None,
        }

    def _participants(self, conversation_id: str) -> list[dict[str, Any]]:
        ids = self.conversations[conversation_id]["participant_ids"]
        return [
            {
                "id": pid,
                "full_name": self.profiles[pid]["full_name"],
                "email": self.profiles[pid]["email"],
                "role": self.profiles[pid]["role"],
                "last_read_at": self.read_markers.get((conversation_id, pid)),
            }
            for pid in ids
        ]

    def _detail(self, conversation_id: str) -> dict[str, Any]:
        conversation = {k: v for k, v in self.conversations[conversation_id].items() if k != "participant_ids"}
        return {**conversation, "participants": self._participants(conversation_id)}

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return self.profiles.get(user_id)

    async def list_conversations(
        self, *, user_id: str, unread_only: bool, search: str | None, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        rows = []
        for conversation_id, conversation in self.conversations.items():
            if user_id not in conversation["participant_ids"]:
                continue
            last_read = self.read_markers.get((conversation_id, user_id))
            unread = [
                m
                for m in self.messages
                if m["conversation_id"] == conversation_id
                and m["sender_id"] != user_id
                and (last_read is None or m["created_at"] > last_read)
            ]
            if unread_only and not unread:
                continue
            rows.append({**self._detail(conversation_id), "unread_count": len(unread), "last_message_preview": "preview"})
        return rows[offset : offset + limit], len(rows)

    async def create_conversation(
        self,
        *,
        user_id: str,
        recipient_id: str,
        context_type: str,
        context_id: str | None,
        initial_message: str,
    ) -> dict[str, Any]:
        if recipient_id not in self.profiles:
            raise RepositoryNotFoundError("recipient not found")
        existing = next(
            (
                cid
                for cid, conversation in self.conversations.items()
                if set(conversation["participant_ids"]) == {user_id, recipient_id}
                and conversation["context_type"] == context_type
                and conversation["context_id"] == context_id
            ),
            None,
        )
        created = existing is None
        conversation_id = existing or f"20000000-0000-0000-0000-{len(self.conversations) + 1:012d}"
        if created:
            self.conversations[conversation_id] = {
                "id": conversation_id,
                "context_type": context_type,
                "context_id": context_id,
                "agency_name": "Acme" if context_type == "agency_inquiry" else None,
                "last_message_at": None,
                "created_at": datetime.now(timezone.utc),
                "participant_ids": [user_id, recipient_id],
            }
        message = await self.insert_message(conversation_id=conversation_id, sender_id=user_id, content=initial_message)
        return {"conversation": self._detail(conversation_id), "message": message, "created": created}

    async def get_conversation(self, *, conversation_id: str, user_id: str) -> dict[str, Any]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or user_id not in conversation["participant_ids"]:
            raise RepositoryNotFoundError("conversation not found")
        return self._detail(conversation_id)

    async def list_conversation_participants(self, conversation_id: str) -> list[dict[str, Any]]:
        return self._participants(conversation_id)

    async def is_participant(self, *, conversation_id: str, user_id: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        return conversation is not None and user_id in conversation["participant_ids"]

    async def list_messages(self, *, conversation_id: str, before: str | None, limit: int) -> list[dict[str, Any]]:
        rows = sorted(
            (m for m in self.messages if m["conversation_id"] == conversation_id),
            key=lambda m: m["created_at"],
            reverse=True,
        )
        if before:
            cursor = next(m for m in rows if m["id"] == before)
            rows = [m for m in rows if m["created_at"] < cursor["created_at"]]
        return [dict(m, sender_name=self.profiles[m["sender_id"]]["full_name"]) for m in rows[:limit]]

    async def mark_conversation_read(self, *, conversation_id: str, user_id: str) -> datetime:
        if self.fail_read_marker:
            raise RepositoryError("failed to update read marker")
        if not await self.is_participant(conversation_id=conversation_id, user_id=user_id):
            raise RepositoryNotFoundError("conversation not found")
        marker = datetime.now(timezone.utc)
        self.read_markers[(conversation_id, user_id)] = marker
        return marker

    async def insert_message(self, *, conversation_id: str, sender_id: str, content: str) -> dict[str, Any]:
        message = self._message(
            f"40000000-0000-0000-0000-{len(self.messages) + 100:012d}",
            sender_id,
            content,
            datetime.now(timezone.utc),
        )
        message["conversation_id"] = conversation_id
        self.messages.append(message)
        self.conversations[conversation_id]["last_message_at"] = message["created_at"]
        return dict(message)

    async def get_message(self, message_id: str) -> dict[str, Any]:
        for message in self.messages:
            if message["id"] == message_id:
                return dict(message)
        raise RepositoryNotFoundError("message not found")

    async def edit_message(self, *, message_id: str, content: str) -> dict[str, Any]:
        for message in self.messages:
            if message["id"] == message_id:
                message.update(content=content, edited_at=datetime.now(timezone.utc))
                return dict(message)
        raise RepositoryNotFoundError("message not found")

    async def soft_delete_message(self, message_id: str) -> dict[str, Any]:
        for message in self.messages:
            if message["id"] == message_id:
                message.update(deleted_at=datetime.now(timezone.utc), content=None)
                return dict(message)
        raise RepositoryNotFoundError("message not found")

    async def get_unread_counts(self, user_id: str) -> dict[str, int]:
        rows, _ = await self.list_conversations(user_id=user_id, unread_only=True, search=None, limit=100, offset=0)
        return {
            "total_unread": sum(row["unread_count"] for row in rows),
            "conversations_with_unread": len(rows),
        }


class CapturingEmailClient:
    configured = True

    def __init__(self) -> None:
        self.sent: list[Any] = []

    async def send(self, message: Any, *, client: Any = None) -> EmailResult:
        self.sent.append(message)
        return EmailResult(sent=True)


@pytest.fixture
def repo() -> FakeMessagingRepository:
    return FakeMessagingRepository()


@pytest.fixture
def mailer() -> CapturingEmailClient:
    return CapturingEmailClient()


@pytest.fixture
def messages_client(
    monkeypatch: pytest.MonkeyPatch,
    repo: FakeMessagingRepository,
    mailer: CapturingEmailClient,
) -> TestClient:
    os.environ["SD_SUPABASE_URL"] = "https://example.supabase.co"
    os.environ["SD_SUPABASE_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()

    tokens = {"alice": ALICE, "bob": BOB, "mallory": MALLORY, "admin": ADMIN}

    async def _fake_fetch(**kwargs: Any) -> dict[str, Any]:
        return {"id": tokens[kwargs["token"]]}

    monkeypatch.setattr(security, "_fetch_supabase_user", _fake_fetch)
    app.dependency_overrides[get_repository] = lambda: repo
    app.dependency_overrides[get_email_client] = lambda: mailer

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    os.environ.pop("SD_SUPABASE_URL", None)
    os.environ.pop("SD_SUPABASE_ANON_KEY", None)
    get_settings.cache_clear()


def _as(user: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {user}"}


def test_list_conversations_with_unread_counts(messages_client: TestClient) -> None:
    response = messages_client.get("/api/messages/conversations", headers=_as("alice"))

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"total": 1, "limit": 25, "offset": 0, "has_more": False}
    assert body["data"][0]["unread_count"] == 3
    assert {p["id"] for p in body["data"][0]["participants"]} == {ALICE, BOB}


def test_unread_filter_hides_read_conversations(messages_client: TestClient) -> None:
    messages_client.put(f"/api/messages/conversations/{CONVERSATION_ID}/read", headers=_as("alice"))
    response = messages_client.get("/api/messages/conversations", params={"filter": "unread"}, headers=_as("alice"))

    assert response.status_code == 200
    assert response.json()["data"] == []


def test_outsider_sees_no_conversations(messages_client: TestClient) -> None:
    response = messages_client.get("/api/messages/conversations", headers=_as("mallory"))
    assert response.json()["pagination"]["total"] == 0


def test_create_conversation_and_notify_recipient(
    messages_client: TestClient,
    repo: FakeMessagingRepository,
    mailer: CapturingEmailClient,
) -> None:
    response = messages_client.post(
        "/api/messages/conversations",
        json={
            "recipient_id": BOB,
            "context_type": "agency_inquiry",
            "context_id": AGENCY_ID,
            "initial_message": "  Do you have welders available in March?  ",
        },
        headers=_as("mallory"),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["created"] is True
    assert data["message"]["content"] == "Do you have welders available in March?"
    assert data["conversation"]["context_id"] == AGENCY_ID
    assert [message.to for message in mailer.sent] == ["bob@example.com"]
    assert mailer.sent[0].subject == "New message from Mallory"


def test_create_conversation_reuses_existing_thread(messages_client: TestClient) -> None:
    response = messages_client.post(
        "/api/messages/conversations",
        json={"recipient_id": BOB, "context_type": "general", "initial_message": "Following up"},
        headers=_as("alice"),
    )

    assert response.status_code == 201
    assert response.json()["data"]["created"] is False
    assert response.json()["data"]["conversation"]["id"] == CONVERSATION_ID


def test_agency_inquiry_requires_context_id(messages_client: TestClient) -> None:
    response = messages_client.post(
        "/api/messages/conversations",
        json={"recipient_id": BOB, "context_type": "agency_inquiry", "initial_message": "Hi"},
        headers=_as("alice"),
    )
    assert response.status_code == 400


def test_cannot_message_yourself(messages_client: TestClient) -> None:
    response = messages_client.post(
        "/api/messages/conversations",
        json={"recipient_id": ALICE, "context_type": "general", "initial_message": "Hi me"},
        headers=_as("alice"),
    )
    assert response.status_code == 400


def test_get_conversation_paginates_and_marks_read(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    response = messages_client.get(
        f"/api/messages/conversations/{CONVERSATION_ID}",
        params={"limit": 2},
        headers=_as("alice"),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert [m["content"] for m in data["messages"]] == ["message 3", "message 2"]
    assert data["has_more"] is True
    assert (CONVERSATION_ID, ALICE) in repo.read_markers

    older = messages_client.get(
        f"/api/messages/conversations/{CONVERSATION_ID}",
        params={"limit": 2, "before": data["messages"][-1]["id"]},
        headers=_as("alice"),
    )
    assert [m["content"] for m in older.json()["data"]["messages"]] == ["message 1"]
    assert older.json()["data"]["has_more"] is False


def test_get_conversation_hidden_from_non_participant(messages_client: TestClient) -> None:
    response = messages_client.get(f"/api/messages/conversations/{CONVERSATION_ID}", headers=_as("mallory"))
    assert response.status_code == 404


def test_thread_view_survives_read_marker_failure(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    repo.fail_read_marker = True
    response = messages_client.get(f"/api/messages/conversations/{CONVERSATION_ID}", headers=_as("alice"))

    assert response.status_code == 200
    assert len(response.json()["data"]["messages"]) == 3
    assert repo.read_markers == {}


def test_mark_read_failure_returns_database_error(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    repo.fail_read_marker = True
    response = messages_client.put(f"/api/messages/conversations/{CONVERSATION_ID}/read", headers=_as("alice"))

    assert response.status_code == 500
    assert response.json()["error"] == {"code": "DATABASE_ERROR", "message": "Failed to mark conversation as read"}


def test_get_conversation_rejects_non_uuid(messages_client: TestClient) -> None:
    response = messages_client.get("/api/messages/conversations/not-a-uuid", headers=_as("alice"))
    assert response.status_code == 400


def test_send_message_requires_participation(messages_client: TestClient) -> None:
    response = messages_client.post(
        f"/api/messages/conversations/{CONVERSATION_ID}/messages",
        json={"content": "let me in"},
        headers=_as("mallory"),
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.parametrize(
    "content",
    [
        "<script>alert('x')</script>",
        '<a href="#" onclick="steal()">hi</a>',
        "see javascript:alert(1)",
        "   ",
        "x" * 10001,
    ],
)
def test_send_message_rejects_unsafe_or_invalid_content(messages_client: TestClient, content: str) -> None:
    response = messages_client.post(
        f"/api/messages/conversations/{CONVERSATION_ID}/messages",
        json={"content": content},
        headers=_as("alice"),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_send_message_notifies_other_participant(
    messages_client: TestClient,
    repo: FakeMessagingRepository,
    mailer: CapturingEmailClient,
) -> None:
    response = messages_client.post(
        f"/api/messages/conversations/{CONVERSATION_ID}/messages",
        json={"content": "Can you staff 4 welders next week?"},
        headers=_as("alice"),
    )

    assert response.status_code == 201
    assert response.json()["data"]["message"]["sender_id"] == ALICE
    assert [message.to for message in mailer.sent] == ["bob@example.com"]


def test_unread_count(messages_client: TestClient) -> None:
    response = messages_client.get("/api/messages/unread-count", headers=_as("alice"))
    assert response.status_code == 200
    assert response.json() == {"total_unread": 3, "conversations_with_unread": 1}


def test_sender_can_edit_recent_message(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    message = repo.messages[-1]
    message["created_at"] = datetime.now(timezone.utc) - timedelta(minutes=1)
    response = messages_client.patch(f"/api/messages/{message['id']}", json={"content": "edited"}, headers=_as("bob"))

    assert response.status_code == 200
    assert response.json()["data"]["message"]["content"] == "edited"
    assert response.json()["data"]["message"]["edited_at"] is not None


def test_edit_window_expires(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    message = repo.messages[0]
    response = messages_client.patch(f"/api/messages/{message['id']}", json={"content": "too late"}, headers=_as("bob"))

    assert response.status_code == 400
    assert response.json()["error"]["message"] == (
        "Edit window expired. Messages can only be edited within 5 minutes of sending."
    )


def test_only_sender_can_edit(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    message = repo.messages[-1]
    message["created_at"] = datetime.now(timezone.utc)
    response = messages_client.patch(f"/api/messages/{message['id']}", json={"content": "hijack"}, headers=_as("alice"))
    assert response.status_code == 403


def test_admin_can_delete_any_message_once(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    message_id = repo.messages[0]["id"]

    first = messages_client.delete(f"/api/messages/{message_id}", headers=_as("admin"))
    second = messages_client.delete(f"/api/messages/{message_id}", headers=_as("admin"))

    assert first.status_code == 200
    assert first.json()["data"]["id"] == message_id
    assert first.json()["data"]["deleted_at"] is not None
    assert second.status_code == 400


def test_non_sender_cannot_delete(messages_client: TestClient, repo: FakeMessagingRepository) -> None:
    response = messages_client.delete(f"/api/messages/{repo.messages[0]['id']}", headers=_as("alice"))
    assert response.status_code == 403


def test_missing_message_returns_404(messages_client: TestClient) -> None:
    response = messages_client.delete("/api/messages/40000000-0000-0000-0000-999999999999", headers=_as("bob"))
    assert response.status_code == 404

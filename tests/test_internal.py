import json
import uuid

import pytest

from omnigate.config import settings
from omnigate.models import Message
from omnigate.services.conversation_service import get_conversation, upsert_conversation
from omnigate.services.handoff_service import hand_to_human


@pytest.fixture
def conversation_id(db, workspace):
    upsert = upsert_conversation(db, bot_id=workspace.bot.id, channel_type="telegram", external_thread_id="5001")
    db.commit()
    return upsert.conversation_id


class TestInternalAuth:
    def test_missing_key(self, client, internal_key, conversation_id):
        response = client.get(f"/v1/internal/conversation-state/{conversation_id}")
        assert response.status_code == 401

    def test_wrong_key(self, client, internal_key, conversation_id):
        response = client.get(
            f"/v1/internal/conversation-state/{conversation_id}", headers={"X-Internal-Key": "nope"}
        )
        assert response.status_code == 401

    def test_bearer_token_accepted(self, client, internal_key, conversation_id):
        token = internal_key["X-Internal-Key"]
        response = client.get(
            f"/v1/internal/conversation-state/{conversation_id}", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 200

    def test_unconfigured_key(self, client, monkeypatch, conversation_id):
        monkeypatch.setattr(settings, "internal_api_key", None)

        response = client.get(f"/v1/internal/conversation-state/{conversation_id}", headers={"X-Internal-Key": "x"})

        assert response.status_code == 500


class TestAIResponse:
    def test_reply_is_stored_and_delivered(self, client, db, internal_key, conversation_id, provider):
        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(conversation_id), "content": "We deliver every day."},
            headers=internal_key,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["handoff_triggered"] is False
        assert data["message"]["role"] == "assistant"
        assert data["message"]["status"] == "sent"
        assert data["delivery"]["provider_message_id"] == "101"
        sent = json.loads(provider.calls("/sendMessage")[0].content)
        assert sent["chat_id"] == "5001"
        assert sent["text"] == "We deliver every day."

    def test_handoff_marker_switches_to_human(self, client, db, internal_key, conversation_id, provider, notifier):
        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(conversation_id), "content": "A manager will reply shortly [HANDOFF]"},
            headers=internal_key,
        )

        data = response.json()
        assert data["handoff_triggered"] is True
        assert data["message"]["content"] == "A manager will reply shortly"
        conversation = get_conversation(db, conversation_id)
        assert conversation.status == "human"
        assert conversation.handoff_reason == "handoff marker"
        assert conversation.last_agent_reply_at is not None
        assert "status:change" in notifier.names()
        sent = json.loads(provider.calls("/sendMessage")[0].content)
        assert "[HANDOFF]" not in sent["text"]

    def test_marker_only_reply_sends_nothing(self, client, db, internal_key, conversation_id, provider):
        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(conversation_id), "content": "[HANDOFF]"},
            headers=internal_key,
        )

        data = response.json()
        assert data["handoff_triggered"] is True
        assert data["message"] is None
        assert provider.requests == []
        db.expire_all()
        assert db.query(Message).count() == 0

    def test_explicit_handoff_flag_with_reason(self, client, db, internal_key, conversation_id):
        client.post(
            "/v1/internal/ai-response",
            json={
                "conversation_id": str(conversation_id),
                "content": "Connecting you with our team.",
                "handoff": True,
                "handoff_reason": "refund request",
            },
            headers=internal_key,
        )

        assert get_conversation(db, conversation_id).handoff_reason == "refund request"

    def test_system_sender(self, client, internal_key, conversation_id):
        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(conversation_id), "content": "Session restarted", "sender_type": "system"},
            headers=internal_key,
        )

        assert response.json()["message"]["role"] == "system"

    def test_delivery_failure_reported(self, client, db, internal_key, conversation_id, provider):
        provider.add("/sendMessage", 403, {"ok": False, "description": "Forbidden: bot was blocked by the user"})

        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(conversation_id), "content": "Hello?"},
            headers=internal_key,
        )

        data = response.json()
        assert response.status_code == 200
        assert data["message"]["status"] == "failed"
        assert data["delivery"]["success"] is False
        assert data["delivery"]["error"] == "Forbidden: bot was blocked by the user"
        assert get_conversation(db, conversation_id).status == "bot"

    def test_unknown_conversation(self, client, internal_key, workspace):
        response = client.post(
            "/v1/internal/ai-response",
            json={"conversation_id": str(uuid.uuid4()), "content": "hi"},
            headers=internal_key,
        )

        assert response.status_code == 404


class TestUpdateState:
    def test_handoff_and_release(self, client, db, internal_key, conversation_id, notifier):
        to_human = client.post(
            "/v1/internal/update-state",
            json={"conversation_id": str(conversation_id), "status": "human", "handoff_reason": "vip"},
            headers=internal_key,
        )
        to_bot = client.post(
            "/v1/internal/update-state",
            json={"conversation_id": str(conversation_id), "status": "bot"},
            headers=internal_key,
        )

        assert to_human.json() == {
            "conversation_id": str(conversation_id),
            "old_status": "bot",
            "new_status": "human",
            "changed": True,
        }
        assert to_bot.json()["new_status"] == "bot"
        assert notifier.names().count("status:change") == 2

    def test_invalid_status_rejected(self, client, internal_key, conversation_id):
        response = client.post(
            "/v1/internal/update-state",
            json={"conversation_id": str(conversation_id), "status": "closed"},
            headers=internal_key,
        )

        assert response.status_code == 422


class TestConversationState:
    def test_bot_state(self, client, internal_key, conversation_id):
        data = client.get(f"/v1/internal/conversation-state/{conversation_id}", headers=internal_key).json()

        assert data["status"] == "bot"
        assert data["ai_active"] is True
        assert data["unanswered_count"] == 0

    def test_human_state(self, client, db, internal_key, conversation_id):
        hand_to_human(db, conversation_id, reason="operator")
        db.commit()

        data = client.get(f"/v1/internal/conversation-state/{conversation_id}", headers=internal_key).json()

        assert data["status"] == "human"
        assert data["ai_active"] is False
        assert data["handoff_reason"] == "operator"

    def test_not_found(self, client, internal_key, workspace):
        response = client.get(f"/v1/internal/conversation-state/{uuid.uuid4()}", headers=internal_key)
        assert response.status_code == 404

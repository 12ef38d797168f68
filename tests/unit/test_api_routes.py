"""Unit tests for the HTTP API.

Services are attached to ``app.state`` directly; the lifespan is not run,
so no database or Redis is needed.
"""

import os
import uuid

os.environ["APP_SECRET_KEY"] = "test-secret-key-for-encryption-32chars"

import pytest
from fastapi.testclient import TestClient

from fakes import make_agent
from polymind.domain.chat.types import NotificationTopic, StoredContext
from polymind.main import create_app


@pytest.fixture
def agent():
    return make_agent("openai", "GPT")


@pytest.fixture
def client(stub_registry, orchestrator_factory, context_manager, room_id, agent):
    app = create_app()
    orchestrator = orchestrator_factory({room_id: [agent]})
    app.state.provider_registry = stub_registry
    app.state.chat_orchestrator = orchestrator
    app.state.context_manager = context_manager
    return TestClient(app)


class TestProviderRoutes:
    """Test the provider catalogue endpoints."""

    def test_list_providers(self, client):
        """Test every configured provider is listed."""
        response = client.get("/api/v1/providers")

        assert response.status_code == 200
        names = [item["name"] for item in response.json()]
        assert names == ["openai", "claude", "gemini", "deepseek"]

    def test_list_models(self, client):
        """Test a provider's model list is returned under its canonical name."""
        response = client.get("/api/v1/providers/ChatGPT/models")

        assert response.status_code == 200
        assert response.json() == {"provider": "openai", "models": ["stub-model"]}

    def test_unknown_provider_is_400(self, client):
        """Test an unsupported provider maps to a configuration error."""
        response = client.get("/api/v1/providers/mistral/models")

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "configuration_error"
        assert body["details"]["normalized"] == "mistral"

    def test_validate_with_own_key(self, client, ephemeral_adapters):
        """Test validating a new key uses and then closes a private adapter."""
        response = client.post(
            "/api/v1/providers/validate",
            json={"provider": "openai", "api_key": "sk-candidate-key"},
        )

        assert response.status_code == 200
        assert response.json() == {"provider": "openai", "valid": True}
        assert ephemeral_adapters[0].closed

    def test_validate_blank_default_key(self, client):
        """Test a provider whose default key is blank is reported invalid."""
        response = client.post("/api/v1/providers/validate", json={"provider": "DeepSeek"})

        assert response.status_code == 200
        assert response.json() == {"provider": "deepseek", "valid": False}

    def test_validate_request_validation(self, client):
        """Test a missing provider is rejected with 422."""
        response = client.post("/api/v1/providers/validate", json={})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestChatRoutes:
    """Test chat dispatch."""

    def test_dispatch_runs_in_background(self, client, room_id, agent, message_store, notifier):
        """Test dispatch is accepted and the agent answers."""
        response = client.post(
            f"/api/v1/rooms/{room_id}/chat",
            json={
                "content": "Hello?",
                "sender_id": str(uuid.uuid4()),
                "mentions": [str(agent.id), str(agent.id)],
            },
        )

        assert response.status_code == 202
        assert response.json() == {"room_id": str(room_id), "accepted": True, "agents": 1}
        assert message_store.content_for(agent.id) == "Hello there!"
        assert notifier.topics_for(agent.id)[-1] == NotificationTopic.COMPLETE

    def test_dispatch_without_mentions(self, client, room_id, notifier):
        """Test a message without mentions is accepted but starts nothing."""
        response = client.post(
            f"/api/v1/rooms/{room_id}/chat",
            json={"content": "Hello?", "sender_id": str(uuid.uuid4())},
        )

        assert response.status_code == 202
        assert response.json()["accepted"] is False
        assert notifier.events == []

    def test_dispatch_rejects_unknown_mode(self, client, room_id):
        """Test the mode must be one of the supported values."""
        response = client.post(
            f"/api/v1/rooms/{room_id}/chat",
            json={"content": "Hi", "sender_id": str(uuid.uuid4()), "mode": "telepathy"},
        )

        assert response.status_code == 422

    def test_no_active_turns(self, client, room_id):
        """Test an idle room has no running turns."""
        response = client.get(f"/api/v1/rooms/{room_id}/turns")

        assert response.status_code == 200
        assert response.json() == []


class TestContextRoutes:
    """Test context reset."""

    def test_reset_existing(self, client, room_id, agent, context_store):
        """Test a stored context is deleted."""
        context_store.rows[(room_id, agent.id)] = StoredContext(messages=[], token_count=0)

        response = client.delete(f"/api/v1/rooms/{room_id}/agents/{agent.id}/context")

        assert response.status_code == 204
        assert context_store.rows == {}

    def test_reset_missing_is_404(self, client, room_id):
        """Test resetting an unknown context is a 404."""
        response = client.delete(f"/api/v1/rooms/{room_id}/agents/{uuid.uuid4()}/context")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from src.api.rate_limit import SlidingWindowLimiter, chat_limiter
from src.server import app

CHAT_BODY = {
    "question": "How much is whitening?",
    "botId": "demo-dental",
    "conversationId": "conv-1",
    "history": [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "Hello! How can we help?"},
    ],
}


@pytest.fixture(autouse=True)
def fresh_rate_limit():
    chat_limiter.reset()
    yield
    chat_limiter.reset()


@pytest.fixture
def mock_agent():
    """Create a mock agent and attach it to app state (mirrors the lifespan)."""
    agent = MagicMock()
    agent.run_turn.return_value = {
        "answer": "Whitening is €350.",
        "ctas": [{"id": "lead_name_yes", "label": "Yes"}, {"id": "lead_name_no", "label": "No"}],
    }

    # Attach to app state the same way the lifespan does
    app.state.agent = agent
    yield agent
    # Clean up
    app.state.agent = None


@pytest.fixture
def client(mock_agent):
    """FastAPI test client with the mock agent wired up."""
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "dental-chat-assistant"


class TestChatEndpoint:
    def test_chat_returns_payload(self, client):
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 200
        data = response.json()
        assert data["answer"] == "Whitening is €350."
        assert [c["id"] for c in data["ctas"]] == ["lead_name_yes", "lead_name_no"]

    def test_empty_fields_are_omitted(self, client):
        data = client.post("/api/chat", json=CHAT_BODY).json()
        assert "iframe" not in data
        assert "link" not in data
        assert "suppress_lead_capture" not in data

    def test_calendar_payload(self, client, mock_agent):
        mock_agent.run_turn.return_value = {
            "answer": "\u200b",
            "iframe": "https://calendly.com/x?embed_type=Inline&mode=booking",
            "embed_outcome": "iframe",
            "embed_provider": "calendly.com",
            "suppress_lead_capture": True,
        }
        data = client.post("/api/chat", json=CHAT_BODY).json()
        assert data["iframe"].endswith("mode=booking")
        assert data["suppress_lead_capture"] is True
        assert "ctas" not in data

    def test_request_is_mapped_to_turn_input(self, client, mock_agent):
        body = {**CHAT_BODY, "userAuthId": "auth-7", "visitorName": "Ana", "isAfterHours": True}
        client.post("/api/chat", json=body, headers={"Origin": "https://smile.example"})

        turn = mock_agent.run_turn.call_args[0][0]
        assert turn.bot_id == "demo-dental"
        assert turn.conversation_id == "conv-1"
        assert turn.question == "How much is whitening?"
        assert [(t.role, t.content) for t in turn.history] == [
            ("user", "hi"),
            ("assistant", "Hello! How can we help?"),
        ]
        assert turn.user_id == "auth-7"
        assert turn.visitor_name == "Ana"
        assert turn.is_after_hours is True
        assert turn.host_domain == "smile.example"

    def test_snake_case_keys_are_accepted(self, client, mock_agent):
        body = {"question": "hi", "bot_id": "demo-dental", "conversation_id": "c2"}
        response = client.post("/api/chat", json=body)
        assert response.status_code == 200
        assert mock_agent.run_turn.call_args[0][0].conversation_id == "c2"

    def test_host_header_used_without_origin(self, client, mock_agent):
        with patch("src.api.routes.PUBLIC_SITE_URL", ""):
            client.post("/api/chat", json=CHAT_BODY)
        assert mock_agent.run_turn.call_args[0][0].host_domain == "testserver"

    def test_chat_validates_empty_question(self, client):
        response = client.post("/api/chat", json={**CHAT_BODY, "question": ""})
        assert response.status_code == 422  # Pydantic validation error

    def test_chat_validates_missing_bot(self, client):
        body = {k: v for k, v in CHAT_BODY.items() if k != "botId"}
        assert client.post("/api/chat", json=body).status_code == 422

    def test_chat_validates_history_role(self, client):
        body = {**CHAT_BODY, "history": [{"role": "system", "content": "x"}]}
        assert client.post("/api/chat", json=body).status_code == 422

    def test_chat_handles_agent_error(self, client, mock_agent):
        mock_agent.run_turn.side_effect = RuntimeError("LLM exploded")
        response = client.post("/api/chat", json=CHAT_BODY)
        assert response.status_code == 500
        # Verify we do NOT leak the internal error message to the client
        detail = response.json()["detail"]
        assert "LLM exploded" not in detail
        assert "internal error" in detail.lower()

    def test_empty_payload_is_an_error(self, client, mock_agent):
        mock_agent.run_turn.return_value = {}
        assert client.post("/api/chat", json=CHAT_BODY).status_code == 500

    def test_response_includes_request_id_header(self, client):
        response = client.post("/api/chat", json=CHAT_BODY)
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post("/api/chat", json=CHAT_BODY, headers={"X-Request-ID": "my-trace-id-123"})
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestAgentNotReady:
    def test_returns_503_when_agent_not_initialised(self):
        """If the agent hasn't been set via lifespan, return 503."""
        # Enter the test client (triggers lifespan), then wipe the agent
        # to simulate the state before lifespan completes.
        with patch("src.server.create_chat_agent", return_value=MagicMock()), \
                patch("src.server.metrics"), TestClient(app) as tc:
            app.state.agent = None
            response = tc.post("/api/chat", json=CHAT_BODY)
            assert response.status_code == 503
            assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Dental Chat Assistant"
        assert data["chat"] == "/api/chat"
        assert "docs" in data


class TestRateLimit:
    def test_chat_is_limited_per_ip(self, client, mock_agent):
        with patch.object(chat_limiter, "requests_per_minute", 2):
            codes = [client.post("/api/chat", json=CHAT_BODY).status_code for _ in range(3)]
        assert codes == [200, 200, 429]
        assert mock_agent.run_turn.call_count == 2

    def test_limited_response_keeps_request_id(self, client):
        with patch.object(chat_limiter, "requests_per_minute", 1):
            client.post("/api/chat", json=CHAT_BODY)
            response = client.post("/api/chat", json=CHAT_BODY, headers={"X-Request-ID": "trace-429"})
        assert response.status_code == 429
        assert "too many requests" in response.json()["detail"].lower()
        assert response.headers["X-Request-ID"] == "trace-429"

    def test_forwarded_ips_are_counted_separately(self, client):
        with patch.object(chat_limiter, "requests_per_minute", 1):
            first = client.post("/api/chat", json=CHAT_BODY, headers={"X-Forwarded-For": "203.0.113.5"})
            other = client.post("/api/chat", json=CHAT_BODY, headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})
            again = client.post("/api/chat", json=CHAT_BODY, headers={"X-Forwarded-For": "203.0.113.5"})
        assert (first.status_code, other.status_code, again.status_code) == (200, 200, 429)

    def test_health_is_not_limited(self, client):
        with patch.object(chat_limiter, "requests_per_minute", 1):
            codes = {client.get("/api/health").status_code for _ in range(3)}
        assert codes == {200}

    def test_zero_disables_the_limit(self, client):
        with patch.object(chat_limiter, "requests_per_minute", 0):
            codes = {client.post("/api/chat", json=CHAT_BODY).status_code for _ in range(3)}
        assert codes == {200}


class TestSlidingWindowLimiter:
    def test_window_slides(self):
        limiter = SlidingWindowLimiter(requests_per_minute=2)
        assert limiter.allow("1.2.3.4", now=0.0)
        assert limiter.allow("1.2.3.4", now=10.0)
        assert not limiter.allow("1.2.3.4", now=59.0)
        # The first hit has left the window
        assert limiter.allow("1.2.3.4", now=60.0)
        assert not limiter.allow("1.2.3.4", now=61.0)

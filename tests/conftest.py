"""Shared test fixtures and fake collaborators for the chat engine tests."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("CALENDLY_API_TOKEN", "test-calendly-token-456")


# ── Fake collaborators ───────────────────────────────────────────────


class FakeCompletion:
    """Completion service returning a fixed answer and recording calls."""

    def __init__(self, answer: str = "We offer cleanings for €75.", error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls: list[tuple[list, str]] = []

    def complete(self, messages, *, operation="completion") -> str:
        self.calls.append((messages, operation))
        if self.error is not None:
            raise self.error
        return self.answer


class FakeRetriever:
    def __init__(self, chunks=None, error: Exception | None = None):
        self.chunks = list(chunks or [])
        self.error = error
        self.queries: list[tuple[str, str]] = []

    def search(self, bot_id, query):
        self.queries.append((bot_id, query))
        if self.error is not None:
            raise self.error
        return list(self.chunks)


class StaticBusinessLoader:
    def __init__(self, biz, error: Exception | None = None):
        self.biz = biz
        self.error = error

    def load(self, bot_id, is_after_hours, host_domain):
        if self.error is not None:
            raise self.error
        return self.biz


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def biz():
    """An open clinic with an embeddable calendar."""
    from src.engine.models import BizContext

    return BizContext(
        bot_id="demo-dental",
        business_name="Bright Smile Dental",
        description="Family dental practice.",
        address="12 High Street, Dublin",
        phone="+353 1 555 0142",
        email="hello@brightsmile.example",
        hours_text="Mon–Fri 8:30–18:00",
        is_open_now=True,
        services=("cleaning", "whitening"),
        booking_provider="iframe",
        booking_url="https://calendly.com/bright-smile/new-patient",
        booking_iframe="https://calendly.com/bright-smile/new-patient?embed_domain=example.com&embed_type=Inline",
        maps_url="https://maps.google.com/?q=12%20High%20Street%2C%20Dublin",
    )


@pytest.fixture
def covered_chunks():
    """Knowledge chunks long and relevant enough to pass the coverage gate."""
    from src.engine.models import KnowledgeChunk

    body = (
        "How much does a cleaning cost?\nA hygiene visit with our hygienist costs €75 and "
        "lasts 30 minutes. It includes scaling, polishing and personalised advice on "
        "brushing and flossing. Most patients come every six months; with gum disease "
        "the hygienist may suggest visits every three or four months."
    )
    return [KnowledgeChunk(text=body, score=0.9)]


@pytest.fixture
def make_agent(biz, covered_chunks):
    """Factory building a chat agent wired to fakes and an in-memory store."""
    from src.agent import ChatDependencies, create_chat_agent
    from src.engine.intents import RuleBasedIntentClassifier
    from src.services.store import InMemoryConversationStore

    def _make(**overrides):
        deps = ChatDependencies(
            classifier=overrides.pop("classifier", RuleBasedIntentClassifier()),
            retriever=overrides.pop("retriever", FakeRetriever(covered_chunks)),
            business=overrides.pop("business", StaticBusinessLoader(overrides.pop("biz", biz))),
            completion=overrides.pop("completion", FakeCompletion()),
            store=overrides.pop("store", InMemoryConversationStore()),
            calendar=overrides.pop("calendar", None),
        )
        assert not overrides, f"unknown overrides: {overrides}"
        return create_chat_agent(deps)

    return _make


@pytest.fixture
def mock_calendly_response():
    """Factory fixture for creating mock Calendly API responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make

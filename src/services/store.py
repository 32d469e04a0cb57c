"""Conversation persistence: chat turn rows and leads.

Two backends share one small contract:

* ``insert_chat_turns(rows)`` appends the user/assistant row pair of a turn;
* ``upsert_lead(lead)`` creates or updates the lead for a conversation,
  keyed on ``(bot_id, conversation_id)``, without overwriting known
  fields with blanks.

``InMemoryConversationStore`` is process-local and is what tests and the
CLI use.  ``SupabaseConversationStore`` talks to Supabase's PostgREST API
over ``httpx``; the ``chat_messages`` and ``leads`` tables are expected to
exist with a unique constraint on ``leads(bot_id, conversation_id)``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from src.config import STORE_BACKEND, SUPABASE_KEY, SUPABASE_URL
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class ConversationStoreError(Exception):
    """Raised when a persistence call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class ChatRow:
    bot_id: str
    conversation_id: str
    role: str
    content: str
    user_id: str | None = None
    intent: str | None = None
    created_at: str = field(default_factory=_now_iso)

    def to_record(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Lead:
    bot_id: str
    conversation_id: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    message: str | None = None
    user_id: str | None = None
    source: str = "chat"

    def to_record(self) -> dict[str, Any]:
        # Omit unknown fields so a merge never blanks out a stored value
        return {k: v for k, v in asdict(self).items() if v is not None}


class ConversationStore(Protocol):
    def insert_chat_turns(self, rows: list[ChatRow]) -> None: ...

    def upsert_lead(self, lead: Lead) -> None: ...


# ── In-memory ────────────────────────────────────────────────────────


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._rows: list[dict[str, Any]] = []
        self._leads: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def insert_chat_turns(self, rows: list[ChatRow]) -> None:
        with self._lock:
            self._rows.extend(r.to_record() for r in rows)

    def upsert_lead(self, lead: Lead) -> None:
        key = (lead.bot_id, lead.conversation_id)
        with self._lock:
            merged = {**self._leads.get(key, {}), **lead.to_record()}
            self._leads[key] = merged

    # ── Introspection ────────────────────────────────────────────────

    def rows_for(self, bot_id: str, conversation_id: str) -> list[dict[str, Any]]:
        with self._lock:
            return [
                r for r in self._rows
                if r["bot_id"] == bot_id and r["conversation_id"] == conversation_id
            ]

    def lead_for(self, bot_id: str, conversation_id: str) -> dict[str, Any] | None:
        with self._lock:
            lead = self._leads.get((bot_id, conversation_id))
            return dict(lead) if lead else None


# ── Supabase (PostgREST) ─────────────────────────────────────────────


class SupabaseConversationStore:
    """PostgREST client for the ``chat_messages`` and ``leads`` tables."""

    def __init__(self, url: str | None = None, key: str | None = None) -> None:
        url = url or SUPABASE_URL
        key = key or SUPABASE_KEY
        if not url or not key:
            raise OSError("SUPABASE_URL and SUPABASE_KEY are required for the supabase store backend.")
        self._client = httpx.Client(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": key,
                "Authorization": f"Bearer {key}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def _post(
        self,
        operation: str,
        path: str,
        body: Any,
        *,
        prefer: str,
        params: dict[str, str] | None = None,
    ) -> None:
        t0 = time.perf_counter()
        try:
            response = self._client.post(path, json=body, params=params, headers={"Prefer": prefer})
        except httpx.HTTPError as exc:
            metrics.record_failure(
                "supabase", operation,
                error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise ConversationStoreError(f"{operation} failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        if response.status_code >= 400:
            metrics.record_failure(
                "supabase", operation,
                error_type="5xx" if response.status_code >= 500 else "4xx", latency_ms=elapsed,
            )
            raise ConversationStoreError(
                f"{operation} error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        metrics.record_success("supabase", operation, latency_ms=elapsed)

    def insert_chat_turns(self, rows: list[ChatRow]) -> None:
        self._post(
            "insert_chat_turns", "/chat_messages",
            [r.to_record() for r in rows],
            prefer="return=minimal",
        )

    def upsert_lead(self, lead: Lead) -> None:
        self._post(
            "upsert_lead", "/leads",
            lead.to_record(),
            prefer="resolution=merge-duplicates,return=minimal",
            params={"on_conflict": "bot_id,conversation_id"},
        )


def build_conversation_store(backend: str = STORE_BACKEND) -> ConversationStore:
    if backend == "supabase":
        logger.info("Using Supabase conversation store")
        return SupabaseConversationStore()
    if backend != "memory":
        logger.warning("Unknown STORE_BACKEND %r; using in-memory store", backend)
    return InMemoryConversationStore()

"""Calendly API v2 client used by the chat's cancel button.

The chat engine only needs one write against the calendar provider:
cancelling a scheduled event when the visitor clicks a ``cancel_appt:<id>``
button.  Everything else (picking a time, rescheduling) happens inside
the provider's own booking page, shown to the visitor as an iframe or link.

Transient failures (timeouts and other transport errors, 5xx) are retried
with exponential backoff; 4xx responses and unreadable bodies fail
immediately.

Calendly API docs: https://developer.calendly.com/api-docs/
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from src.config import CALENDLY_API_TOKEN, CALENDLY_BASE_URL
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0
CANCEL_REASON = "Cancelled by patient via website chat"


class CalendlyAPIError(Exception):
    """A Calendly call failed; ``status_code`` is set for HTTP errors."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


def _operation(method: str, path: str) -> str:
    # Metric label without event ids: "POST /scheduled_events"
    return f"{method} /{path.strip('/').split('/')[0]}"


def _backoff(attempt: int) -> float:
    return INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))


def _error_type(exc: CalendlyAPIError) -> str:
    if exc.status_code and 400 <= exc.status_code < 500:
        return "4xx"
    return "invalid_response"


class CalendlyClient:
    """Bearer-token client for the Calendly REST API."""

    def __init__(self, token: str | None = None, base_url: str | None = None):
        self._client = httpx.Client(
            base_url=base_url or CALENDLY_BASE_URL,
            headers={
                "Authorization": f"Bearer {token or CALENDLY_API_TOKEN}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def _send(self, method: str, path: str, json_body: dict[str, Any] | None) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, json=json_body)
        except httpx.HTTPError as exc:
            raise CalendlyAPIError(f"{type(exc).__name__}: {exc}") from exc
        if response.status_code >= 400:
            kind = "Server" if response.status_code >= 500 else "Client"
            raise CalendlyAPIError(
                f"{kind} error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise CalendlyAPIError(
                f"Invalid JSON in response: {exc}", status_code=response.status_code,
            ) from exc

    def _request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send with retries on transient failures; records one metric per call."""
        operation = _operation(method, path)
        started = time.perf_counter()
        last_error: CalendlyAPIError | None = None

        for attempt in range(1, MAX_RETRIES + 1):
            try:
                result = self._send(method, path, json_body)
            except CalendlyAPIError as exc:
                if not exc.retryable:
                    metrics.record_failure(
                        "calendly", operation, error_type=_error_type(exc),
                        latency_ms=(time.perf_counter() - started) * 1000,
                    )
                    raise
                last_error = exc
                logger.warning(
                    "Calendly %s attempt %d/%d failed (%s); retrying in %.1fs",
                    operation, attempt, MAX_RETRIES, exc, _backoff(attempt),
                )
                time.sleep(_backoff(attempt))
                continue

            metrics.record_success("calendly", operation, latency_ms=(time.perf_counter() - started) * 1000)
            return result

        metrics.record_failure(
            "calendly", operation,
            error_type="5xx" if last_error and last_error.status_code else "network",
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        raise CalendlyAPIError(
            f"Calendly request failed after {MAX_RETRIES} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )

    def cancel_event(self, event_uuid: str, reason: str = CANCEL_REASON) -> dict[str, Any]:
        """Cancel the scheduled event *event_uuid*; the reason is shown to the practice."""
        result = self._request(
            "POST",
            f"/scheduled_events/{event_uuid}/cancellation",
            json_body={"reason": reason},
        )
        logger.info("Cancelled Calendly event %s", event_uuid)
        return result


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: CalendlyClient | None = None
_client_lock = threading.Lock()


def get_calendly_client() -> CalendlyClient | None:
    """Shared client, or ``None`` without an API token.

    Without a token, cancel buttons degrade to the manage-appointment link.
    """
    global _client
    if not CALENDLY_API_TOKEN:
        return None
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = CalendlyClient()
    return _client

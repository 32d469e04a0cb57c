"""CloudWatch custom metrics for the chat engine, batched in the background.

Two families of metrics are published under the ``DentalChat`` namespace:

``ExternalAPI/*``
    One request count per call to an external collaborator (Anthropic,
    Calendly, Supabase, the knowledge index), a latency sample, and an
    error count by error type on failure.

``Chat/*``
    One ``TurnCount`` per handled message, dimensioned by the executor
    route and the intent, and one ``Fallback`` per graph node that failed
    and was replaced by the safe answer.

Metrics are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  Locally (``METRICS_ENABLED != "true"``) they
are only logged at DEBUG level.

>>> from src.services.metrics import metrics
>>> metrics.record_success("anthropic", "answer", latency_ms=812.4)
>>> metrics.record_failure("supabase", "upsert_lead", error_type="5xx")
>>> metrics.record_turn("booking", "booking")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "DentalChat"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


def _dims(**pairs: str) -> list[dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in pairs.items()]


class MetricsClient:
    """Buffered CloudWatch publisher shared by every request thread."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External calls ───────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Count a successful call to *service* and sample its latency."""
        now = datetime.now(UTC)
        self._point("ExternalAPI/RequestCount", _dims(Service=service, Status="success"), 1, now=now)
        self._point(
            "ExternalAPI/Latency", _dims(Service=service, Operation=operation),
            latency_ms, unit="Milliseconds", now=now,
        )
        logger.debug("Metric: %s %s ok %.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Count a failed call; latency is sampled only when known."""
        now = datetime.now(UTC)
        self._point("ExternalAPI/RequestCount", _dims(Service=service, Status="failure"), 1, now=now)
        self._point("ExternalAPI/ErrorCount", _dims(Service=service, ErrorType=error_type), 1, now=now)
        if latency_ms > 0:
            self._point(
                "ExternalAPI/Latency", _dims(Service=service, Operation=operation),
                latency_ms, unit="Milliseconds", now=now,
            )
        logger.debug("Metric: %s %s failed (%s)", service, operation, error_type)

    # ── Conversation turns ───────────────────────────────────────────

    def record_turn(self, route: str, intent: str) -> None:
        self._point("Chat/TurnCount", _dims(Route=route, Intent=intent), 1)
        logger.debug("Metric: turn route=%s intent=%s", route, intent)

    def record_fallback(self, node: str) -> None:
        """Count a graph node that failed and was answered with the safe reply."""
        self._point("Chat/Fallback", _dims(Node=node), 1)

    # ── Publishing ───────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []

        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _point(
        self,
        name: str,
        dimensions: list[dict[str, str]],
        value: float,
        *,
        unit: str = "Count",
        now: datetime | None = None,
    ) -> None:
        point = {
            "MetricName": name,
            "Dimensions": dimensions,
            "Timestamp": now or datetime.now(UTC),
            "Value": value,
            "Unit": unit,
        }
        with self._lock:
            self._buffer.append(point)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        threading.Thread(target=_loop, daemon=True, name="metrics-flush").start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()

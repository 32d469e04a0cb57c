"""Text completion service backed by Anthropic via ``langchain-anthropic``.

Two calls per turn at most go through here: the grounded answer and the
tone rewrite of a canned pipeline message.  Both callers treat a
``CompletionError`` as "use the canned text instead".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import BaseMessage

from src.config import ANTHROPIC_API_KEY, COMPLETION_TEMPERATURE, MODEL_NAME
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

MAX_TOKENS = 600


class CompletionError(Exception):
    """Raised when the completion backend fails or returns nothing usable."""


class CompletionService(Protocol):
    def complete(self, messages: Sequence[BaseMessage], *, operation: str = "completion") -> str: ...


def _build_llm() -> ChatAnthropic:
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=COMPLETION_TEMPERATURE,
        max_tokens=MAX_TOKENS,
    )


def _content_text(content) -> str:
    """Flatten an AIMessage ``content`` (str or list of blocks) to text."""
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class AnthropicCompletionService:
    """``complete(messages) -> str`` over a ``ChatAnthropic`` model."""

    def __init__(self, llm: ChatAnthropic | None = None) -> None:
        self._llm = llm or _build_llm()

    def complete(self, messages: Sequence[BaseMessage], *, operation: str = "completion") -> str:
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke(list(messages))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise CompletionError(f"{operation} failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        text = _content_text(response.content).strip()
        if not text:
            metrics.record_failure("anthropic", operation, error_type="empty", latency_ms=elapsed)
            raise CompletionError(f"{operation} returned no text")

        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.debug("%s (%s) responded in %.0fms", operation, MODEL_NAME, elapsed)
        return text

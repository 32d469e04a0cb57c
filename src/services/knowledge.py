"""Per-bot knowledge retrieval from Markdown files.

Each bot has a ``<KNOWLEDGE_DIR>/<bot_id>.md`` file written as a FAQ:
``###`` headings are questions, the text below them is the answer.  The
file is split into one chunk per section and chunks are scored against
the query by keyword overlap, normalised to ``[0, 1]`` so that the
coverage gate can apply its score threshold.

Files are read once per bot and kept in memory for the life of the
process.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from pathlib import Path
from typing import Protocol

from src.config import KNOWLEDGE_DIR
from src.engine.coverage import significant_tokens
from src.engine.models import KnowledgeChunk
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 8
HEADING_BONUS = 0.25

_BOT_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class KnowledgeRetriever(Protocol):
    def search(self, bot_id: str, query: str) -> list[KnowledgeChunk]: ...


def split_into_sections(content: str) -> list[dict[str, str]]:
    """Split a Markdown FAQ into Q&A sections.

    Returns a list of dicts like:
      {"heading": "Do you offer whitening?", "body": "Yes, we offer..."}
    """
    sections: list[dict[str, str]] = []
    parts = re.split(r"###\s+(.+?)(?=\n)", content)

    # parts[0] is the preamble, then alternating heading/body pairs
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1].strip() if i + 1 < len(parts) else ""
        # Section separators and the next ## group title belong to no answer
        body = re.sub(r"\n##\s+[^\n]*\s*$", "", body)
        body = re.sub(r"\n---\s*$", "", body).strip()
        sections.append({"heading": heading, "body": body})

    return sections


def score_section(query_tokens: set[str], heading: str, body: str) -> float:
    """Share of query tokens found in the section, plus a heading bonus."""
    if not query_tokens:
        return 0.0
    heading_tokens = set(significant_tokens(heading))
    text_tokens = heading_tokens | set(significant_tokens(body))
    overlap = len(query_tokens & text_tokens) / len(query_tokens)
    if query_tokens & heading_tokens:
        overlap += HEADING_BONUS
    return round(min(overlap, 1.0), 4)


class MarkdownKnowledgeRetriever:
    """Keyword retriever over ``<knowledge_dir>/<bot_id>.md`` files."""

    def __init__(self, knowledge_dir: Path | str = KNOWLEDGE_DIR, limit: int = DEFAULT_LIMIT) -> None:
        self._dir = Path(knowledge_dir)
        self._limit = limit
        self._sections: dict[str, list[dict[str, str]]] = {}
        self._lock = threading.Lock()

    def _load(self, bot_id: str) -> list[dict[str, str]]:
        with self._lock:
            if bot_id in self._sections:
                return self._sections[bot_id]
            path = self._dir / f"{bot_id}.md"
            try:
                sections = split_into_sections(path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                logger.warning("No knowledge file for bot %s at %s", bot_id, path)
                sections = []
            self._sections[bot_id] = sections
            logger.debug("Loaded %d knowledge sections for bot %s", len(sections), bot_id)
            return sections

    def search(self, bot_id: str, query: str) -> list[KnowledgeChunk]:
        """Return the best-matching sections for *query*, highest score first."""
        if not _BOT_ID_RE.match(bot_id or ""):
            logger.warning("Rejected knowledge lookup for invalid bot id %r", bot_id)
            return []

        t0 = time.perf_counter()
        query_tokens = set(significant_tokens(query))
        scored = []
        for section in self._load(bot_id):
            score = score_section(query_tokens, section["heading"], section["body"])
            if score > 0:
                text = f"{section['heading']}\n{section['body']}"
                scored.append(KnowledgeChunk(text=text, score=score))

        scored.sort(key=lambda c: c.score, reverse=True)
        metrics.record_success("knowledge", "search", latency_ms=(time.perf_counter() - t0) * 1000)
        return scored[: self._limit]

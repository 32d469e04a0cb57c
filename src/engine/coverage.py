"""Knowledge-coverage gate.

Decides whether the retrieved knowledge is enough to justify a grounded
LLM answer.  Chunks that look like site chrome (cookie banners, footers,
newsletter boxes …) are dropped first; the rest are ranked by score and
the top five kept.  The question is covered when any of these hold:

  (i)   chunks scoring ≥ 0.72 add up to at least 400 characters;
  (ii)  at least two significant question words appear in the knowledge;
  (iii) the kept chunks add up to more than 200 characters.

When the gate says no, the caller answers with a canned template and the
completion service is never called.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from src.config import (
    COVERAGE_MAX_CHUNKS,
    COVERAGE_MIN_CHARS,
    COVERAGE_MIN_OVERLAP,
    COVERAGE_MIN_SCORE,
    COVERAGE_MIN_VOLUME,
)
from src.engine.models import KnowledgeChunk

BOILERPLATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bcookies?\b", re.IGNORECASE),
    re.compile(r"\bprivacy\b", re.IGNORECASE),
    re.compile(r"\bterms?\b", re.IGNORECASE),
    re.compile(r"\bnewsletter\b", re.IGNORECASE),
    re.compile(r"©|\ball rights reserved\b|\bcopyright\b", re.IGNORECASE),
    re.compile(r"\bfooter\b", re.IGNORECASE),
    re.compile(r"\bsite by\b", re.IGNORECASE),
    re.compile(r"\btracking\b", re.IGNORECASE),
    re.compile(r"\bmarketing\b", re.IGNORECASE),
    re.compile(r"\bsubscribe\b", re.IGNORECASE),
)

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "for", "to", "in", "of", "on", "with", "at", "by",
    "from", "about", "into", "over", "after", "before", "is", "are", "was", "were", "be",
    "been", "being", "this", "that", "these", "those", "it", "as", "we", "you", "they",
    "i", "do", "does", "did", "can", "could", "would", "should", "what", "when", "where",
    "how", "which", "who", "why", "your", "my", "me", "our", "us", "any", "have", "has",
})

_TOKEN_RE = re.compile(r"[a-z][a-z0-9'-]{1,}")


def is_boilerplate(text: str) -> bool:
    sample = (text or "")[:4000]
    return any(p.search(sample) for p in BOILERPLATE_PATTERNS)


def filter_chunks(chunks: Sequence[KnowledgeChunk], max_chunks: int = COVERAGE_MAX_CHUNKS) -> list[KnowledgeChunk]:
    """Drop empty and boilerplate chunks, keep the best *max_chunks* by score."""
    kept = [c for c in chunks if (c.text or "").strip() and not is_boilerplate(c.text)]
    kept.sort(key=lambda c: c.score, reverse=True)
    return kept[:max_chunks]


def significant_tokens(text: str) -> list[str]:
    return [w for w in _TOKEN_RE.findall((text or "").lower()) if w not in STOPWORDS]


def has_confident_coverage(
    chunks: Sequence[KnowledgeChunk],
    min_score: float = COVERAGE_MIN_SCORE,
    min_chars: int = COVERAGE_MIN_CHARS,
) -> bool:
    strong = sum(len(c.text) for c in chunks if c.score >= min_score)
    return strong >= min_chars


def assemble_knowledge(description: str, chunks: Sequence[KnowledgeChunk]) -> str:
    """Knowledge text for the prompt: business description plus kept chunks."""
    passages = "\n\n---\n\n".join(c.text.strip() for c in chunks)
    return "\n".join([
        "Business Description:", description or "",
        "",
        "Website & Knowledge Base Content:", passages,
    ])


def kb_covers_question(question: str, knowledge_text: str, chunks: Sequence[KnowledgeChunk]) -> bool:
    """Apply the three coverage criteria to already filtered *chunks*."""
    if has_confident_coverage(chunks):
        return True

    q_tokens = set(significant_tokens(question))
    if q_tokens:
        kb_tokens = set(significant_tokens(knowledge_text))
        if len(q_tokens & kb_tokens) >= COVERAGE_MIN_OVERLAP:
            return True

    return sum(len(c.text) for c in chunks) > COVERAGE_MIN_VOLUME

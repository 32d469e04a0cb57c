"""Entity extraction over the full transcript.

Email and phone are taken from visitor-authored text only (assistant
messages often quote the practice's own contact details), first match
wins.  Names come from replies to a name ask or from an explicit
"my name is …" statement, last plausible value wins.  Service is mapped
onto a small dental taxonomy, last mention wins.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from src.engine.models import Entities, Turn
from src.engine.text import (
    EMAIL_RE,
    NAME_ASK_RE,
    cap_name,
    explicit_name,
    find_phone,
    inline_name,
    is_bad_name_token,
)

SERVICE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("cleaning", re.compile(r"\b(clean|cleaning|scale|scaling|polish|polishing|deep clean)\b", re.I)),
    ("filling", re.compile(r"\bfillings?\b", re.I)),
    ("crown", re.compile(r"\bcrowns?\b", re.I)),
    ("orthodontics", re.compile(r"\b(braces|aligners?|invisalign|orthodont\w*)\b", re.I)),
    ("whitening", re.compile(r"\b(whiten|whitening|bleach\w*|brighten\w*)\b", re.I)),
    ("implants", re.compile(r"\bimplants?\b", re.I)),
    ("root canal", re.compile(r"\b(root canal|endodont\w*)\b", re.I)),
)


def _first_email(texts: Sequence[str]) -> str | None:
    for text in texts:
        m = EMAIL_RE.search(text)
        if m:
            return m.group(0).lower()
    return None


def _first_phone(texts: Sequence[str]) -> str | None:
    for text in texts:
        phone = find_phone(text)
        if phone:
            return phone
    return None


def _last_service(texts: Sequence[str]) -> str | None:
    joined = "\n".join(texts)
    best: tuple[int, str] | None = None
    for label, pattern in SERVICE_PATTERNS:
        for m in pattern.finditer(joined):
            if best is None or m.start() >= best[0]:
                best = (m.start(), label)
    return best[1] if best else None


def _last_name(turns: Sequence[Turn]) -> str | None:
    name: str | None = None
    for i, turn in enumerate(turns):
        if turn.role != "user":
            continue
        candidate = explicit_name(turn.content)
        prev = turns[i - 1] if i > 0 else None
        if candidate is None and prev and prev.role == "assistant" and NAME_ASK_RE.search(prev.content):
            candidate = inline_name(turn.content)
        if candidate and not is_bad_name_token(candidate):
            name = cap_name(candidate)
    return name


def extract_entities(
    history: Sequence[Turn],
    current: str = "",
    *,
    visitor_name: str | None = None,
    visitor_email: str | None = None,
) -> Entities:
    """Accumulate entities over *history* plus the current visitor message.

    Pure and idempotent: the same transcript always yields the same
    entities.  ``visitor_name``/``visitor_email`` come from the embedding
    page and seed the result.
    """
    turns = list(history)
    if current:
        turns.append(Turn("user", current))
    user_texts = [t.content or "" for t in turns if t.role == "user"]

    seeded_email = visitor_email.strip().lower() if visitor_email and visitor_email.strip() else None
    seeded_name = cap_name(visitor_name) if visitor_name and visitor_name.strip() else None

    return Entities(
        name=_last_name(turns) or seeded_name,
        email=seeded_email or _first_email(user_texts),
        phone=_first_phone(user_texts),
        service=_last_service(user_texts),
    )

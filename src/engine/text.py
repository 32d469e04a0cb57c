"""Text heuristics shared by the entity extractor, the state reconstructor
and the executors.

All functions are pure and operate on plain strings or ``Turn`` sequences.
The prompt patterns here must stay in sync with the wording used by the
pipeline tables and the lead-capture prompts, because asked/declined state
is recovered by matching assistant messages against them.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from src.engine.models import Turn

# ── Contact formats ──────────────────────────────────────────────────

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{7,}\d")
_EMAIL_EXACT_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_EXACT_RE = re.compile(r"^\+?\d[\d\s().-]{7,}\d$")
MIN_PHONE_DIGITS = 7
# "800-1200", "10.30 - 11.30": two short numbers around a dash
_NUMERIC_RANGE_MAX_DIGITS = 4
_ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")


def normalize_email(text: str) -> str:
    return re.sub(r"\s+", "", text or "").lower()


def normalize_phone(text: str) -> str:
    return re.sub(r"[^\d+]", "", text or "")


def is_numeric_range(text: str) -> bool:
    """True for a price or time range such as ``"800-1200"`` or ``"10.30 - 11.30"``."""
    sides = (text or "").split("-")
    if len(sides) != 2:
        return False
    digits = [sum(ch.isdigit() for ch in side) for side in sides]
    return all(0 < n <= _NUMERIC_RANGE_MAX_DIGITS for n in digits)


def find_phone(text: str) -> str | None:
    """First phone number in free text, normalised, skipping dates and ranges."""
    for m in PHONE_RE.finditer(text or ""):
        candidate = m.group(0).strip()
        if _ISO_DATE_RE.fullmatch(candidate) or is_numeric_range(candidate):
            continue
        digits = normalize_phone(candidate)
        if sum(ch.isdigit() for ch in digits) >= MIN_PHONE_DIGITS:
            return digits
    return None


def is_email(text: str) -> bool:
    """True when the whole message is a single email address."""
    return bool(_EMAIL_EXACT_RE.match(re.sub(r"\s+", "", text or "")))


def is_phone(text: str) -> bool:
    """True when the whole message is a single phone number."""
    s = (text or "").strip()
    if not _PHONE_EXACT_RE.match(s) or is_numeric_range(s):
        return False
    return sum(ch.isdigit() for ch in s) >= MIN_PHONE_DIGITS


def cap_name(value: str | None) -> str:
    """Title-case each word of a name (``"ana  de souza"`` → ``"Ana De Souza"``)."""
    words = (value or "").strip().lower().split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


# ── Names ────────────────────────────────────────────────────────────

_BAD_NAME_TOKEN_RE = re.compile(
    r"\b(yes|yeah|yep|sure|ok|okay|please|no|nah|nope|not now|later|maybe|"
    r"thanks|thank you|hi|hello|hey)\b",
    re.IGNORECASE,
)
_NOT_A_NAME_WORDS_RE = re.compile(
    r"\b(when|how|what|where|who|why|which|can|could|would|should|cost|price|"
    r"book|schedule|appointment|calendar|times?|today|tomorrow|clean|came|"
    r"skip|email|phone)\b",
    re.IGNORECASE,
)
_NAME_WORD_RE = re.compile(r"[^\W\d_](?:[^\W\d_]|['’-]){1,19}")
# Letters plus apostrophes, hyphens and spaces
_NAME_CAPTURE = r"([^\W\d_](?:[^\W\d_]|['’ -]){1,40})"
# "Ana and I need a cleaning" -> "Ana"
_NAME_TAIL_RE = re.compile(r"\s+(?:and|but|so|i|from|here|with|for)\b.*$", re.IGNORECASE)
_EXPLICIT_NAME_RE = re.compile(
    r"\b(?:my\s+name\s+is|name\s*[:=])\s*" + _NAME_CAPTURE, re.IGNORECASE,
)
_INLINE_NAME_RES = (
    re.compile(
        r"\b(?:my\s+name\s+is|name\s*[:=]|i['’]m|i\s+am|it['’]s|it\s+is|this\s+is)"
        r"\s+" + _NAME_CAPTURE,
        re.IGNORECASE,
    ),
    re.compile(
        r"^(?:yes|yeah|yep|sure|ok(?:ay)?)\s*,?\s+" + _NAME_CAPTURE + r"\s*$",
        re.IGNORECASE,
    ),
)


def is_bad_name_token(text: str) -> bool:
    return bool(_BAD_NAME_TOKEN_RE.search((text or "").strip()))


def looks_like_name(text: str) -> bool:
    """Gate a name candidate: one to three plain words, no question shape."""
    s = (text or "").strip()
    if not s or re.search(r"[?!.@\d]", s):
        return False
    if _NOT_A_NAME_WORDS_RE.search(s) or is_bad_name_token(s):
        return False
    parts = s.split()
    if not 1 <= len(parts) <= 3:
        return False
    return all(_NAME_WORD_RE.fullmatch(p) for p in parts)


def _name_candidate(raw: str) -> str:
    return _NAME_TAIL_RE.sub("", raw).strip()


def explicit_name(text: str) -> str | None:
    """Name from an explicit "my name is …" statement, anywhere in a message."""
    m = _EXPLICIT_NAME_RE.search(text or "")
    if m:
        candidate = _name_candidate(m.group(1))
        if looks_like_name(candidate):
            return candidate
    return None


def inline_name(text: str) -> str | None:
    """Name from a reply to a name ask (``"I'm Ana"``, ``"yes, Ana"``, ``"Ana"``)."""
    s = (text or "").strip()
    for pattern in _INLINE_NAME_RES:
        m = pattern.search(s)
        if m and looks_like_name(_name_candidate(m.group(1))):
            return _name_candidate(m.group(1))
    if looks_like_name(s):
        return s
    return None


# ── Assistant prompt patterns ────────────────────────────────────────

NAME_ASK_RE = re.compile(
    r"your name|name please|what(?:['’]|\s+i)?s your name|can i take your name|"
    r"what name should i (?:use|put)|put this under your name|"
    r"(?:could you )?please provide (?:your )?name",
    re.IGNORECASE,
)
EMAIL_ASK_RE = re.compile(
    r"your email|best email|share (?:your )?email|get your email|email to send|keep you posted",
    re.IGNORECASE,
)
PHONE_ASK_RE = re.compile(r"phone number in case|what(?:['’]s| is) your phone", re.IGNORECASE)
SERVICE_ASK_RE = re.compile(r"what are you looking for today", re.IGNORECASE)
_OFFER_VERB_RE = re.compile(
    r"\b(want me to|shall i|should i|do you want (me )?to|would you (like|prefer)( me)? to|"
    r"would you like to|want to)\b",
    re.IGNORECASE,
)
_OFFER_OBJECT_RE = re.compile(
    r"\b(calendar|book|schedule|appointment|consultation|pick a time|choose a time|"
    r"available times|proceed)\b",
    re.IGNORECASE,
)
ACK_RE = re.compile(
    r"saved your details|use this for support|you['’]?re all set|i['’]ve got your details",
    re.IGNORECASE,
)


def offers_to_open_calendar(text: str) -> bool:
    """True when an assistant message offers to open the calendar or book."""
    return bool(_OFFER_VERB_RE.search(text or "") and _OFFER_OBJECT_RE.search(text or ""))


def _last_match_start(pattern: re.Pattern[str], text: str) -> int:
    starts = [m.start() for m in pattern.finditer(text)]
    return starts[-1] if starts else -1


def latest_prompt(text: str) -> str | None:
    """Which prompt an assistant message ends on: ``name``, ``email`` or ``booking``.

    When one message carries several prompts (an answer followed by a
    capture offer, say) the one that appears last is the one a yes/no
    reply is answering.
    """
    text = text or ""
    positions = {
        "name": _last_match_start(NAME_ASK_RE, text),
        "email": _last_match_start(EMAIL_ASK_RE, text),
        "booking": _last_match_start(_OFFER_VERB_RE, text) if _OFFER_OBJECT_RE.search(text) else -1,
    }
    kind, pos = max(positions.items(), key=lambda kv: kv[1])
    return kind if pos >= 0 else None


ASK_PATTERNS: dict[str, re.Pattern[str]] = {
    "name": NAME_ASK_RE,
    "email": EMAIL_ASK_RE,
    "phone": PHONE_ASK_RE,
    "service": SERVICE_ASK_RE,
}


def is_capture_prompt(text: str) -> bool:
    """True for any assistant message that asks for a name or an email."""
    return bool(NAME_ASK_RE.search(text or "") or EMAIL_ASK_RE.search(text or ""))


def last_capture_index(history: Sequence[Turn]) -> int:
    for i in range(len(history) - 1, -1, -1):
        turn = history[i]
        if turn.role == "assistant" and is_capture_prompt(turn.content):
            return i
    return -1


def count_capture_asks(history: Sequence[Turn]) -> int:
    return sum(1 for t in history if t.role == "assistant" and is_capture_prompt(t.content))


def last_assistant_text(history: Sequence[Turn]) -> str:
    """Content of the latest non-empty assistant turn."""
    for turn in reversed(history):
        if turn.role == "assistant" and (turn.content or "").strip():
            return turn.content
    return ""


# ── Visitor replies ──────────────────────────────────────────────────

YES_RE = re.compile(r"\b(yes|yeah|yep|sure|ok|okay|please|go ahead|do it|sounds good)\b", re.IGNORECASE)
NO_RE = re.compile(r"\b(no|nah|nope|not now|later|maybe|skip)\b", re.IGNORECASE)
_CAPTURE_INPUT_RE = re.compile(
    r"\b(yes|yeah|yep|ok|okay|no|nah|nope|please|thanks|thank you)\b", re.IGNORECASE,
)
# Button ids such as lead_name_yes or cancel_appt:<id>
_CTA_TOKEN_RE = re.compile(r"^[a-z]+(?:_[a-z]+)+(?::[A-Za-z0-9-]+)?$")


def is_likely_capture_input(text: str) -> bool:
    """Short yes/no/thanks style replies that carry no question of their own."""
    t = (text or "").strip()
    return not t or bool(_CAPTURE_INPUT_RE.search(t) or _CTA_TOKEN_RE.match(t))


def is_low_signal(text: str) -> bool:
    """Empty, a single word, or punctuation only."""
    t = (text or "").strip()
    return not t or len(t.split()) == 1 or re.fullmatch(r"\W+", t) is not None


def is_capture_ish(text: str) -> bool:
    return is_likely_capture_input(text) or is_email(text) or is_phone(text)


def last_meaningful_user_text(
    history: Sequence[Turn],
    current: str,
    *,
    skip_contacts: bool = False,
) -> str:
    """Latest user message (current one included) that is not a bare ack.

    With ``skip_contacts`` a message that is only an email or a phone
    number is skipped too, which is what retrieval wants.
    """
    combined = [*history, Turn("user", current)]
    for turn in reversed(combined):
        c = (turn.content or "").strip()
        if turn.role != "user" or not c or is_likely_capture_input(c):
            continue
        if skip_contacts and (is_email(c) or is_phone(c)):
            continue
        return c
    return ""


# ── Booking language ─────────────────────────────────────────────────

_BOOKING_LANGUAGE_RE = re.compile(
    r"\b(book|schedule|appointment|calendar|pick a time|choose a time)\b", re.IGNORECASE,
)


def has_booking_language(text: str) -> bool:
    return bool(_BOOKING_LANGUAGE_RE.search(text or ""))


def strip_early_booking_language(text: str) -> str:
    """Drop every sentence that pushes toward booking."""
    sentences = re.split(r"(?<=[.!?])\s+", text or "")
    return " ".join(s for s in sentences if not has_booking_language(s))


def preview(value: object, limit: int = 120) -> str:
    t = re.sub(r"\s+", " ", str(value or "")).strip()
    return t[:limit] + "…" if len(t) > limit else t

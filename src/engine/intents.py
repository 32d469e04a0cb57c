"""Intent classification.

Two interchangeable classifiers share one contract,
``classify(text, last_assistant_text) -> Intent``:

* ``RuleBasedIntentClassifier`` — fast keyword rules with an
  affirmation-in-context rule ("yes" after the assistant offered to book
  is a booking).  This is the default.
* ``LLMIntentClassifier`` — a cheap Haiku "router" call that answers with
  one label.  Any failure or unknown label falls back to the rules.

Whatever a classifier returns, the emergency keyword override is applied
last and always wins.
"""

from __future__ import annotations

import logging
import re
import time
from enum import StrEnum
from typing import Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from src.config import ANTHROPIC_API_KEY, ROUTER_MODEL_NAME
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


class Intent(StrEnum):
    BOOKING = "booking"
    EMERGENCY = "emergency"
    PRICING = "pricing"
    HOURS = "hours"
    LOCATION = "location"
    OFFER = "offer"
    FAQ = "faq"
    GENERAL = "general"
    SERVICES = "services"
    INSURANCE = "insurance"
    UNKNOWN = "unknown"


# Intents that may receive a proactive lead-capture offer after an answer
LOW_INTENT_INFO: frozenset[Intent] = frozenset({
    Intent.GENERAL,
    Intent.SERVICES,
    Intent.PRICING,
    Intent.HOURS,
    Intent.INSURANCE,
    Intent.FAQ,
    Intent.UNKNOWN,
})

EMERGENCY_RE = re.compile(
    r"\b(toothache|tooth ache|tooth pain|severe pain|swelling|swollen|abscess|"
    r"knocked\s*out|broken|chipped|bleeding|emergency|urgent)\b",
    re.IGNORECASE,
)


class IntentClassifier(Protocol):
    def classify(self, text: str, last_assistant_text: str = "") -> Intent: ...


def apply_emergency_override(intent: Intent, text: str) -> Intent:
    """Emergency keywords replace whatever label the classifier produced."""
    if EMERGENCY_RE.search(text or ""):
        return Intent.EMERGENCY
    return intent


# ── Rule-based classifier ────────────────────────────────────────────

_BOOKING_RE = re.compile(
    r"\b(book|booking|schedule|appointment|availability|available|slots?|reserve|calendar)\b",
    re.IGNORECASE,
)
_TIME_LIKE_RES = (
    re.compile(r"\b(tomorrow|tonight|this week|next week)\b", re.IGNORECASE),
    re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.IGNORECASE),
    re.compile(r"\b\d{1,2}(:\d{2})?\s?(am|pm)\b", re.IGNORECASE),
    re.compile(r"\b(next|this)\s+(morning|afternoon|evening|weekend)\b", re.IGNORECASE),
)
_PAIN_RE = re.compile(r"\b(pain|hurts?|same[- ]day)\b", re.IGNORECASE)
_PRICE_RE = re.compile(r"\b(price|prices|pricing|cost|costs|how much|fee|fees|payment|quote|estimate)\b", re.IGNORECASE)
_HOURS_RE = re.compile(r"\b(hour|hours|open|opening|close|closing|closed|today)\b", re.IGNORECASE)
_LOCATION_RE = re.compile(
    r"\b(where|address|location|located|near|nearby|map|directions?|parking)\b", re.IGNORECASE,
)
_OFFER_RE = re.compile(r"\b(offers?|deals?|discounts?|promotions?|promo|specials?)\b", re.IGNORECASE)
_INSURANCE_RE = re.compile(
    r"\b(insurance|insured|insurer|in-network|out of network|ppo|hmo|delta|metlife|coverage)\b",
    re.IGNORECASE,
)
_SERVICES_RE = re.compile(
    r"\b(services|treatments|procedures|what do you (?:do|offer)|do you (?:do|offer))\b", re.IGNORECASE,
)
_SERVICE_WORD_RE = re.compile(
    r"\b(clean|cleaning|scaling|polish|whitening|filling|fillings|root canal|implants?|crowns?|"
    r"veneers?|braces|invisalign|retainer|extraction|check-?up|consult(ation)?)\b",
    re.IGNORECASE,
)
_GREETING_RE = re.compile(
    r"^(hi|hello|hey|hiya|good (morning|afternoon|evening)|thanks|thank you|cheers)\b", re.IGNORECASE,
)
_AFFIRM_RE = re.compile(
    r"\b(yes|yeah|yep|sure|ok|okay|sounds good|please|go ahead|do it|confirm|let'?s|proceed)\b",
    re.IGNORECASE,
)
_ASSISTANT_OFFERED_BOOKING_RE = re.compile(
    r"\b(book|schedule|appointment|calendar|pick(?:\s+a)?\s+time|choose\s+a\s+time|"
    r"select\s+(?:a\s+)?(?:time|date)|reserve\s+(?:a\s+)?(?:slot|time)|"
    r"set\s+up\s+(?:a\s+)?(?:consultation|visit|appointment)|get\s+you\s+(?:in|scheduled))\b",
    re.IGNORECASE,
)
_ASSISTANT_ASKED_TIMING_RE = re.compile(
    r"\b(calendar|time|date|consultation|appointment|pick|choose|select|schedule)\b", re.IGNORECASE,
)


def _has_time_like(text: str) -> bool:
    return any(p.search(text) for p in _TIME_LIKE_RES)


class RuleBasedIntentClassifier:
    """Keyword rules, checked in priority order."""

    def classify(self, text: str, last_assistant_text: str = "") -> Intent:
        t = (text or "").strip()
        time_like = _has_time_like(t)

        if _BOOKING_RE.search(t) or time_like:
            intent = Intent.BOOKING
        elif _PAIN_RE.search(t):
            intent = Intent.EMERGENCY
        elif _PRICE_RE.search(t):
            intent = Intent.PRICING
        elif _INSURANCE_RE.search(t):
            intent = Intent.INSURANCE
        elif _HOURS_RE.search(t):
            intent = Intent.HOURS
        elif _LOCATION_RE.search(t):
            intent = Intent.LOCATION
        elif _OFFER_RE.search(t):
            intent = Intent.OFFER
        elif last_assistant_text and _AFFIRM_RE.search(t) and _ASSISTANT_OFFERED_BOOKING_RE.search(
            last_assistant_text
        ):
            intent = Intent.BOOKING
        elif _SERVICES_RE.search(t):
            intent = Intent.SERVICES
        elif _SERVICE_WORD_RE.search(t):
            intent = Intent.FAQ
        elif _GREETING_RE.search(t):
            intent = Intent.GENERAL
        else:
            intent = Intent.FAQ if len(t) > 2 else Intent.UNKNOWN

        return apply_emergency_override(intent, t)


# ── LLM router classifier ────────────────────────────────────────────

ROUTER_PROMPT = (
    "Classify the latest message a visitor sent to a dental practice's "
    "website chat.  Reply with exactly one lower-case label from this "
    "list and nothing else:\n"
    "booking, emergency, pricing, hours, location, offer, faq, general, "
    "services, insurance, unknown\n\n"
    "- booking: wants to book, schedule or see available times, or is "
    "saying yes to an offer to open the calendar.\n"
    "- emergency: pain, swelling, broken or knocked-out teeth, bleeding.\n"
    "- general: greetings, thanks and small talk.\n"
    "- faq: any other question about the practice.\n\n"
    "{context}Latest message: {message}\n\n"
    "Label:"
)


def _build_router_llm() -> ChatAnthropic:
    """Build a lightweight Haiku LLM for intent classification."""
    return ChatAnthropic(
        model=ROUTER_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=10,
    )


class LLMIntentClassifier:
    """Router-model classifier with the keyword rules as its safety net."""

    def __init__(self, llm: ChatAnthropic | None = None, fallback: IntentClassifier | None = None):
        self._llm = llm or _build_router_llm()
        self._fallback = fallback or RuleBasedIntentClassifier()

    def classify(self, text: str, last_assistant_text: str = "") -> Intent:
        context = (
            f"Previous assistant message: {last_assistant_text[:300]}\n\n"
            if last_assistant_text else ""
        )
        prompt = ROUTER_PROMPT.format(context=context, message=(text or "")[:500])
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([HumanMessage(content=prompt)])
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_success("anthropic", "intent_classify", latency_ms=elapsed)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", "intent_classify",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            logger.warning("Intent router failed, using keyword rules: %s", exc)
            return self._fallback.classify(text, last_assistant_text)

        raw = str(response.content).strip().lower()
        label = raw.split()[0].strip(".,:;\"'") if raw else ""
        try:
            intent = Intent(label)
        except ValueError:
            logger.debug("Intent router returned %r, using keyword rules", response.content)
            return self._fallback.classify(text, last_assistant_text)

        logger.debug("Intent router (%s) → %s (%.0fms)", ROUTER_MODEL_NAME, intent, elapsed)
        return apply_emergency_override(intent, text)


def build_intent_classifier(mode: str = "rules") -> IntentClassifier:
    if mode == "llm":
        return LLMIntentClassifier()
    return RuleBasedIntentClassifier()

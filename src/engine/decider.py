"""Next-action decision.

``decide_next_action`` is a pure function of the intent, the accumulated
entities, the business context and a handful of per-turn signals.  It
walks the intent's pipeline and returns exactly one action:

1. A message that is only an email or a phone number gets a verbatim
   continuation on the same topic (never a second ask for the same field).
2. Low-signal input ("ok", one word, punctuation) with nothing to confirm
   or ask yields an empty freeform, i.e. "just answer".
3. Otherwise the pipeline is walked in order: guards filter entries, asks
   are skipped when the field is known, already asked or declined, and the
   booking confirm either waits for a yes, is passed on a yes, or turns
   into a decline message on a no.
4. Falling off the end yields an empty freeform.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from src.engine.actions import Action, Ask, Confirm, Freeform
from src.engine.intents import Intent
from src.engine.models import BizContext, Entities
from src.engine.rules import rules_for_intent
from src.engine.text import NO_RE, YES_RE, is_email, is_low_signal, is_phone, offers_to_open_calendar

# CTA ids that the widget sends back as literal messages
CTA_BOOKING_YES = "booking_yes"
CTA_BOOKING_NO = "booking_no"
CTA_OPEN_CALENDAR = "open_calendar_now"


@dataclass(frozen=True)
class Signals:
    booking_yes: bool = False
    booking_no: bool = False
    soft_ack: bool = False
    raw_user_text: str = ""
    asked_fields: frozenset[str] = field(default_factory=frozenset)
    declined_fields: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class BookingSignals:
    assistant_asked_to_open: bool = False
    user_asked_to_open: bool = False
    booking_yes: bool = False
    booking_no: bool = False
    soft_ack: bool = False
    strong_booking_now: bool = False


# ── Booking signals ──────────────────────────────────────────────────

_ASSISTANT_BOOKING_TOPIC_RE = re.compile(r"\b(schedule|book|appointment|consultation|calendar)\b", re.IGNORECASE)
_USER_OPEN_RE = re.compile(
    r"\b(open|show|give|get|see)\b.*\b(calendar|times|availability|slots)\b", re.IGNORECASE,
)
_USER_BOOK_RE = re.compile(
    r"\b(book|schedule|resched\w*)\b.*\b(appointment|slot|time|visit|tomorrow|today|\d{1,2}(:\d{2})?)\b",
    re.IGNORECASE,
)
_SOFT_ACK_RE = re.compile(
    r"\b(ok(ay)?|sounds good|got it|understood|great|cool|fine|alright|all right|noted|"
    r"thanks|thank you|i see|hmm|mm)\b",
    re.IGNORECASE,
)


def compute_booking_signals(
    user_text: str,
    last_assistant_text: str,
    intent: Intent | str,
) -> BookingSignals:
    """Derive booking yes/no signals from this turn and the previous reply."""
    text = (user_text or "").strip()
    token = text.lower()
    if token in (CTA_BOOKING_YES, CTA_OPEN_CALENDAR):
        return BookingSignals(
            user_asked_to_open=True, booking_yes=True, strong_booking_now=True,
        )
    if token == CTA_BOOKING_NO:
        return BookingSignals(booking_no=True)

    asked_to_open = offers_to_open_calendar(last_assistant_text)
    user_asked = bool(_USER_OPEN_RE.search(text) or _USER_BOOK_RE.search(text))
    booking_no = bool(
        (asked_to_open or _ASSISTANT_BOOKING_TOPIC_RE.search(last_assistant_text or ""))
        and NO_RE.search(text)
    )
    said_yes = bool(YES_RE.search(text))
    implied_yes = intent == Intent.BOOKING and said_yes
    booking_yes = not booking_no and ((asked_to_open and said_yes) or user_asked or implied_yes)

    return BookingSignals(
        assistant_asked_to_open=asked_to_open,
        user_asked_to_open=user_asked,
        booking_yes=booking_yes,
        booking_no=booking_no,
        soft_ack=bool(_SOFT_ACK_RE.search(text)),
        strong_booking_now=intent == Intent.BOOKING or booking_yes or user_asked,
    )


# ── Decision ─────────────────────────────────────────────────────────

_USER_DONE_RE = re.compile(
    r"\b(nothing|no thanks?|no thank you|not now|that'?s all|all good|no more|nope|nah|i'?m good|im good)\b",
    re.IGNORECASE,
)

_TOPICS: dict[str, str] = {
    Intent.PRICING: "pricing and what’s included",
    Intent.EMERGENCY: "urgent care and pain relief",
    Intent.HOURS: "today’s hours and earliest openings",
    Intent.LOCATION: "directions and parking",
    Intent.OFFER: "current promotions",
    Intent.BOOKING: "the treatment details",
}

_CONTINUATIONS: dict[str, str] = {
    Intent.PRICING: (
        "Thanks! I’ve saved your details. Do you want a breakdown of what’s included and the "
        "differences for {service}, or should I check available times?"
    ),
    Intent.HOURS: (
        "Thanks! I’ve saved your details. Want me to check today’s hours and the earliest "
        "openings for {service}?"
    ),
    Intent.LOCATION: "Thanks! I’ve saved your details. Do you need directions or parking info for your {service}?",
    Intent.OFFER: "Thanks! I’ve saved your details. Would you like the current promotions relevant to {service}?",
    Intent.BOOKING: "Thanks! I’ve saved your details. Would you like me to pull up available times for {service}?",
}
_SERVICE_FALLBACK: dict[str, str] = {
    Intent.PRICING: "this treatment",
    Intent.LOCATION: "appointment",
    Intent.OFFER: "your treatment",
}


def infer_topic(intent: Intent | str, entities: Entities) -> str:
    service = (entities.service or "").strip().lower()
    if service:
        return service
    return _TOPICS.get(intent, "treatments and prices")


def _continuation(intent: Intent | str, entities: Entities) -> str:
    template = _CONTINUATIONS.get(intent)
    if template is None:
        return (
            "Thanks! I’ve saved your details. What else would you like to know about "
            f"{infer_topic(intent, entities)}?"
        )
    service = entities.service or _SERVICE_FALLBACK.get(intent, "your visit")
    return template.format(service=service)


def _decline_message(intent: Intent | str, entities: Entities) -> str:
    topic = infer_topic(intent, entities)
    if intent == Intent.PRICING:
        return f"No problem—happy to break down {topic}. Anything specific you’re comparing or curious about?"
    if intent in (Intent.BOOKING, Intent.EMERGENCY):
        return f"All good—we can talk through {topic} first. What would you like to know?"
    return f"Got it. What else would you like to know about {topic}?"


def _ask_is_open(ask: Ask, entities: Entities, signals: Signals) -> bool:
    return not (
        entities.is_known(ask.key)
        or ask.key in signals.asked_fields
        or ask.key in signals.declined_fields
    )


def decide_next_action(
    intent: Intent | str,
    entities: Entities,
    biz: BizContext,
    signals: Signals | None = None,
) -> Action:
    """Pick exactly one action for this turn."""
    signals = signals or Signals()
    pipeline = [g for g in rules_for_intent(intent) if g.applies(biz, entities)]

    txt = (signals.raw_user_text or "").strip()

    if is_email(txt) or is_phone(txt):
        if _USER_DONE_RE.search(txt):
            return Freeform("All set—I’m here if you need anything else.", verbatim=True)
        return Freeform(_continuation(intent, entities), verbatim=True)

    low_signal = signals.soft_ack or is_low_signal(txt)
    has_confirm = any(isinstance(g.action, Confirm) for g in pipeline)
    has_pending_ask = any(
        isinstance(g.action, Ask) and _ask_is_open(g.action, entities, signals) for g in pipeline
    )
    if low_signal and not has_confirm and not has_pending_ask:
        return Freeform("")

    for entry in pipeline:
        step = entry.action
        match step:
            case Ask():
                if _ask_is_open(step, entities, signals):
                    return step
            case Confirm():
                if signals.booking_no:
                    return Freeform(_decline_message(intent, entities), verbatim=True)
                if not signals.booking_yes:
                    return step
            case _:
                return step

    return Freeform("")

"""Capture-state reconstruction.

Nothing about a conversation is stored between requests.  Every turn,
``derive_conversation_state`` replays the transcript and works out what
has been asked, answered, declined and completed, and whether a booking
flow is already underway.  The result drives two things:

* ``capture_reply`` — a direct answer to a yes/no (or a name, or a repeat
  email) that the visitor gave to a capture prompt on the previous turn;
* ``offer_kind`` — whether a proactive name or email offer may be appended
  to this turn's answer, subject to the throttle (at most two capture
  prompts per conversation, at least six turns apart) and to declines,
  completion and booking flows.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from src.config import CAPTURE_COOLDOWN_TURNS, CAPTURE_MAX_ASKS
from src.engine.actions import SILENT_ANSWER, Cta
from src.engine.intents import EMERGENCY_RE, Intent
from src.engine.models import Entities, Turn
from src.engine.text import (
    ACK_RE,
    ASK_PATTERNS,
    NO_RE,
    YES_RE,
    cap_name,
    count_capture_asks,
    has_booking_language,
    is_email,
    last_capture_index,
    latest_prompt,
    offers_to_open_calendar,
)

# Capture CTA ids
CTA_NAME_YES = "lead_name_yes"
CTA_NAME_NO = "lead_name_no"
CTA_EMAIL_YES = "lead_email_yes"
CTA_EMAIL_NO = "lead_email_no"

NAME_OFFER = "Can I take your name to tailor this for you?"
EMAIL_OFFER = "Would you like to share your email so I can send details and next steps?"

_CTA_PROMPTS = {
    CTA_NAME_YES: ("name", True),
    CTA_NAME_NO: ("name", False),
    CTA_EMAIL_YES: ("email", True),
    CTA_EMAIL_NO: ("email", False),
}


@dataclass(frozen=True)
class CaptureReply:
    """A verbatim reply to a capture prompt answered on this turn."""

    kind: str
    message: str
    ctas: tuple[Cta, ...] = ()


@dataclass(frozen=True)
class ConversationState:
    last_assistant_text: str = ""
    pending_prompt: str | None = None
    pending_ask: str | None = None
    said_yes: bool = False
    said_no: bool = False
    before_name: bool = False
    before_email_or_phone: bool = False
    now_has_name: bool = False
    now_has_email_or_phone: bool = False
    name_given_now: bool = False
    lead_just_completed: bool = False
    declined_name: bool = False
    declined_email: bool = False
    capture_ask_count: int = 0
    distance_since_last_ask: float = math.inf
    ever_booking_flow: bool = False
    email_acknowledged: bool = False
    asked_fields: frozenset[str] = field(default_factory=frozenset)
    assistant_turns: int = 0
    capture_reply: CaptureReply | None = None

    @property
    def lead_complete_before(self) -> bool:
        return self.before_name and self.before_email_or_phone

    @property
    def declined_fields(self) -> frozenset[str]:
        fields = set()
        if self.declined_name:
            fields.add("name")
        if self.declined_email:
            fields.add("email")
        return frozenset(fields)

    @property
    def can_offer_capture(self) -> bool:
        return (
            not self.lead_complete_before
            and not self.ever_booking_flow
            and not self.said_no
            and self.capture_ask_count < CAPTURE_MAX_ASKS
            and self.distance_since_last_ask >= CAPTURE_COOLDOWN_TURNS
        )

    @property
    def offer_kind(self) -> str | None:
        """``"name"``, ``"email"`` or ``None``: which capture offer may be made now."""
        if not self.can_offer_capture:
            return None
        if not self.now_has_name:
            return None if self.declined_name else "name"
        if not self.now_has_email_or_phone and not self.declined_email:
            return "email"
        return None


# ── History scans ────────────────────────────────────────────────────


def _declined(history: Sequence[Turn], kind: str) -> bool:
    """True if a prompt of *kind* was ever answered with a no."""
    no_cta = CTA_NAME_NO if kind == "name" else CTA_EMAIL_NO
    for i, turn in enumerate(history):
        if turn.role != "user":
            continue
        content = (turn.content or "").strip()
        if content.lower() == no_cta:
            return True
        prev = history[i - 1] if i > 0 else None
        if prev and prev.role == "assistant" and latest_prompt(prev.content) == kind:
            if NO_RE.search(content) and not is_email(content):
                return True
    return False


def _ever_booking_flow(history: Sequence[Turn], current: str, intent: Intent | str) -> bool:
    if intent in (Intent.BOOKING, Intent.EMERGENCY):
        return True
    for turn in [*history, Turn("user", current)]:
        content = turn.content or ""
        if turn.role == "user":
            if has_booking_language(content) or EMERGENCY_RE.search(content):
                return True
            if content.strip().lower() in ("booking_yes", "open_calendar_now", "manage_appointment"):
                return True
        elif content == SILENT_ANSWER or offers_to_open_calendar(content):
            return True
    return False


def _asked_fields(history: Sequence[Turn]) -> frozenset[str]:
    asked = set()
    for turn in history:
        if turn.role != "assistant":
            continue
        for key, pattern in ASK_PATTERNS.items():
            if pattern.search(turn.content or ""):
                asked.add(key)
    return frozenset(asked)


# ── Capture replies ──────────────────────────────────────────────────


def _capture_reply(state: ConversationState, current: str, entities_now: Entities) -> CaptureReply | None:
    pending = state.pending_prompt
    yes_no = state.said_yes or state.said_no

    if pending == "name" and yes_no and not state.name_given_now:
        if state.said_yes:
            return CaptureReply("name_yes", "Great—what’s your name?")
        return CaptureReply("name_no", "No problem—let’s continue. What would you like to know next?")

    if pending == "email" and is_email(current) and (state.before_email_or_phone or state.email_acknowledged):
        thanks = f"Thanks, {cap_name(entities_now.name)}." if entities_now.name else "Thanks."
        return CaptureReply("email_thanks", f"{thanks} We'll use this for support if needed.")

    if pending == "email" and yes_no and not entities_now.email and not is_email(current):
        if state.said_yes:
            return CaptureReply("email_yes", "Great—please type your email (e.g., name@example.com).")
        return CaptureReply("email_no", "All good—I’ll keep helping here.")

    if (
        pending == "name"
        and state.name_given_now
        and not state.now_has_email_or_phone
        and not state.declined_email
        and not state.ever_booking_flow
    ):
        return CaptureReply(
            "email_after_name",
            f"Thanks, {cap_name(entities_now.name)}. What’s the best email to send details and next steps?",
        )
    return None


def derive_conversation_state(
    history: Sequence[Turn],
    current: str,
    entities_before: Entities,
    entities_now: Entities,
    intent: Intent | str = Intent.UNKNOWN,
) -> ConversationState:
    """Replay the transcript and derive this turn's capture state. Pure."""
    text = (current or "").strip()
    token = text.lower()
    previous = history[-1] if history else None
    last_assistant = previous.content if previous and previous.role == "assistant" else ""

    if token in _CTA_PROMPTS:
        pending, yes = _CTA_PROMPTS[token]
        said_yes, said_no = yes, not yes
    else:
        pending = latest_prompt(last_assistant)
        said_yes = bool(YES_RE.search(text))
        said_no = bool(NO_RE.search(text)) and not said_yes

    pending_ask = None
    for key, pattern in ASK_PATTERNS.items():
        if last_assistant and pattern.search(last_assistant):
            pending_ask = key

    last_ask = last_capture_index(history)
    declined_name = _declined(history, "name") or (pending == "name" and said_no)
    declined_email = _declined(history, "email") or (pending == "email" and said_no)

    before_complete = bool(entities_before.name) and entities_before.has_email_or_phone
    now_complete = bool(entities_now.name) and entities_now.has_email_or_phone

    state = ConversationState(
        last_assistant_text=last_assistant,
        pending_prompt=pending,
        pending_ask=pending_ask,
        said_yes=said_yes,
        said_no=said_no,
        before_name=bool(entities_before.name),
        before_email_or_phone=entities_before.has_email_or_phone,
        now_has_name=bool(entities_now.name),
        now_has_email_or_phone=entities_now.has_email_or_phone,
        name_given_now=bool(entities_now.name) and entities_now.name != entities_before.name,
        lead_just_completed=not before_complete and now_complete,
        declined_name=declined_name,
        declined_email=declined_email,
        capture_ask_count=count_capture_asks(history),
        distance_since_last_ask=math.inf if last_ask == -1 else len(history) - last_ask,
        ever_booking_flow=_ever_booking_flow(history, text, intent),
        email_acknowledged=any(t.role == "assistant" and ACK_RE.search(t.content or "") for t in history),
        asked_fields=_asked_fields(history),
        assistant_turns=sum(1 for t in history if t.role == "assistant"),
    )
    reply = _capture_reply(state, text, entities_now)
    if reply is None:
        return state
    return replace(state, capture_reply=reply)

"""Lead-capture executor.

Covers the three ways a turn can ask for contact details:

* a pipeline ``Ask`` sent verbatim;
* a reply to a capture prompt answered on this turn (``CaptureReply``);
* a proactive name or email offer appended to an informational answer,
  with yes/no buttons.

Also builds the ``Lead`` row for turns that captured new contact fields.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from src.engine.actions import Ask, ChatReply, Cta
from src.engine.intents import LOW_INTENT_INFO
from src.engine.models import Entities, Turn
from src.engine.state import (
    CTA_EMAIL_NO,
    CTA_EMAIL_YES,
    CTA_NAME_NO,
    CTA_NAME_YES,
    EMAIL_OFFER,
    NAME_OFFER,
    CaptureReply,
)
from src.engine.text import (
    cap_name,
    find_phone,
    is_email,
    is_likely_capture_input,
    last_capture_index,
    last_meaningful_user_text,
    normalize_email,
)
from src.executors.context import TurnContext
from src.services.store import Lead

logger = logging.getLogger(__name__)

LEAD_MESSAGE_MAX_CHARS = 500


def ask_reply(action: Ask) -> ChatReply:
    return ChatReply(answer=action.message)


def capture_reply(reply: CaptureReply) -> ChatReply:
    return ChatReply(answer=reply.message, ctas=list(reply.ctas))


def offer_capture(answer: str, ctx: TurnContext) -> ChatReply:
    """Append a name or email offer to *answer* when the state allows one."""
    if ctx.intent not in LOW_INTENT_INFO:
        return ChatReply(answer=answer)

    kind = ctx.state.offer_kind
    if kind == "name":
        logger.debug("Offering name capture after answer")
        return ChatReply(
            answer=f"{answer}\n\n{NAME_OFFER}",
            ctas=[Cta(CTA_NAME_YES, "Yes"), Cta(CTA_NAME_NO, "No")],
        )
    if kind == "email":
        logger.debug("Offering email capture after answer")
        name = cap_name(ctx.entities.name)
        thanks = f"Thanks, {name}. " if name else ""
        return ChatReply(
            answer=f"{answer}\n\n{thanks}{EMAIL_OFFER}",
            ctas=[Cta(CTA_EMAIL_YES, "Share my email"), Cta(CTA_EMAIL_NO, "Skip")],
        )
    return ChatReply(answer=answer)


# ── Lead rows ────────────────────────────────────────────────────────


def _usable(text: str) -> bool:
    t = (text or "").strip()
    return bool(t) and not (is_email(t) or find_phone(t) or is_likely_capture_input(t))


def choose_lead_message(history: Sequence[Turn], current: str) -> str:
    """The visitor's first real question, for context on the lead."""
    for turn in history:
        if turn.role == "user" and _usable(turn.content):
            return turn.content.strip()

    idx = last_capture_index(history)
    if idx != -1:
        candidate = last_meaningful_user_text(history[:idx], "")
        if _usable(candidate):
            return candidate.strip()

    candidate = last_meaningful_user_text(history, current)
    return candidate.strip() if _usable(candidate) else ""


def _new_contact_fields(before: Entities, now: Entities) -> bool:
    return any(
        getattr(now, key) and getattr(now, key) != getattr(before, key)
        for key in ("name", "email", "phone")
    )


def build_lead(ctx: TurnContext) -> Lead | None:
    """Lead row for this turn, or ``None`` when nothing new was captured."""
    now = ctx.entities
    if not now.has_email_or_phone or not _new_contact_fields(ctx.entities_before, now):
        return None
    message = choose_lead_message(ctx.history, ctx.user_text)
    return Lead(
        bot_id=ctx.bot_id,
        conversation_id=ctx.conversation_id,
        name=cap_name(now.name) or None,
        email=normalize_email(now.email) if now.email else None,
        phone=now.phone,
        message=message[:LEAD_MESSAGE_MAX_CHARS] or None,
        user_id=ctx.user_id,
    )

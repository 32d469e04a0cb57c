"""Prompts and canned texts for the dental chat assistant."""

from __future__ import annotations

from collections.abc import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from src.engine.actions import SILENT_ANSWER
from src.engine.intents import Intent
from src.engine.models import BizContext, Turn

HISTORY_TURNS = 8

SYSTEM_PROMPT_TEMPLATE = """You are the official assistant for **{business_name}**. Always speak as part of the team, using "we", "our" and "us"; never refer to the practice in the third person.

Detect the visitor's language from their recent messages and reply in the same language.

## Knowledge Boundaries
Use ONLY the knowledge provided in this conversation (the Business Description and the Website & Knowledge Base Content). Do not rely on outside knowledge, generic dental information or assumptions.
- Do not discuss or market services, prices, offers, contact details or policies unless they appear in the provided knowledge.
- If a requested topic is not covered, say you don't have that in our current info and offer a short next step.
- Never invent prices, availability or capabilities. Never fabricate links, emails or phone numbers.
- When listing what we can do, list only what is present in the knowledge.

## This Turn
The visitor's detected intent is: "{intent}".
{next_step}
If the request is unclear, ask one or two short clarifying questions (service, timing, budget).

## Contact Details
If the visitor asks for contact details, share ONLY these exact values, and say "not available" when a field is empty:
- Email: {email}
- Phone: {phone}
- Location: {address}
- Hours: {hours}

## Style
{tone}Be concise and friendly. Focus on how we can help the visitor, and propose one next step.
If the visitor is rude, stay calm and professional, do not repeat insults, and steer back to how we can help.
Never give a diagnosis or medical advice; for pain or swelling, suggest the soonest appointment.

## Context Flags
- AFTER_HOURS: {after_hours}

## Hard Rules
- Do NOT say or imply an appointment is booked.
- Never announce or describe opening or embedding a calendar.
- Only mention that we are closed if AFTER_HOURS = true and the visitor is not actively booking.
- Never mention AI, bots, scraping or internal mechanics."""

TONE_REWRITE_PROMPT = (
    "Rewrite the message below for a dental practice's website chat using a "
    "{tone} tone. Keep the meaning, keep any question at the end, keep it to "
    "one or two short sentences, and reply with the rewritten message only.\n\n"
    "Message: {message}"
)

LEAD_PREFACE = "Thanks! I’ve saved your details. "

_FALLBACK_TEMPLATES: dict[str, str] = {
    Intent.EMERGENCY: (
        "I can help right away with urgent dental issues. I can get you the soonest appointment."
    ),
    Intent.PRICING: (
        "I don’t have that exact price here. I can connect you with our team or help you book a quick consult."
    ),
    Intent.SERVICES: (
        "I don’t see that in the knowledge base. I can connect you with our team or help you book a consult."
    ),
}

_DEFAULT_FALLBACK = (
    "I don’t have that in our current info. I can still help you get the right appointment "
    "or connect you with our team."
)

SAFE_FALLBACK_ANSWER = (
    "Sorry, something went wrong on our side. Please try again in a moment, "
    "or contact the practice directly."
)


def _or_na(value: str) -> str:
    return value or "not available"


def get_fallback_template(intent: Intent | str, biz: BizContext) -> str:
    """Canned answer used when the knowledge does not cover the question."""
    if intent == Intent.HOURS:
        return (
            "Our contact details:\n"
            f"- Email: {_or_na(biz.email)}\n"
            f"- Phone: {_or_na(biz.phone)}\n"
            f"- Location: {_or_na(biz.address)}"
        )
    if intent == Intent.GENERAL:
        return (
            f"Hi! I’m the virtual assistant for {biz.business_name}. Ask me about treatments, "
            "prices, opening hours or booking a visit."
        )
    return _FALLBACK_TEMPLATES.get(intent, _DEFAULT_FALLBACK)


def build_system_prompt(
    biz: BizContext,
    intent: Intent | str,
    *,
    next_step: str = "",
    after_hours: bool = False,
) -> str:
    guidance = f"Suggested next step (use it if it fits naturally): {next_step}" if next_step.strip() else ""
    return SYSTEM_PROMPT_TEMPLATE.format(
        business_name=biz.business_name,
        intent=str(intent),
        next_step=guidance,
        email=_or_na(biz.email),
        phone=_or_na(biz.phone),
        address=_or_na(biz.address),
        hours=_or_na(biz.hours_text),
        tone=f"Use a {biz.tone.lower()} tone. " if biz.tone else "",
        after_hours=str(after_hours).lower(),
    )


def _history_messages(history: Sequence[Turn], max_turns: int = HISTORY_TURNS) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in list(history)[-max_turns:]:
        content = (turn.content or "").strip()
        # Calendar turns carry no visible text
        if not content or content == SILENT_ANSWER:
            continue
        messages.append(HumanMessage(content=content) if turn.role == "user" else AIMessage(content=content))
    return messages


def build_answer_messages(
    system_prompt: str,
    knowledge_text: str,
    history: Sequence[Turn],
    user_text: str,
) -> list[BaseMessage]:
    """System prompt, knowledge message, recent turns, then the user message."""
    return [
        SystemMessage(content=system_prompt),
        HumanMessage(content=f"Use the following information to answer questions:\n\n{knowledge_text}"),
        *_history_messages(history),
        HumanMessage(content=user_text),
    ]


def build_tone_messages(message: str, tone: str) -> list[BaseMessage]:
    return [HumanMessage(content=TONE_REWRITE_PROMPT.format(tone=tone.lower(), message=message))]

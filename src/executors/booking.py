"""Booking executor: the confirm prompt and opening the calendar."""

from __future__ import annotations

import logging
from typing import assert_never
from urllib.parse import urlsplit

from src.engine.actions import SILENT_ANSWER, ChatReply, Confirm, Cta, OpenCalendar
from src.engine.decider import CTA_BOOKING_NO, CTA_BOOKING_YES
from src.executors.context import TurnContext, rewrite_with_tone, with_lead_preface
from src.services.business import add_query_param
from src.services.completion import CompletionService

logger = logging.getLogger(__name__)

NO_PROVIDER_MESSAGE = "I can help you schedule. What's a good time for you?"


def _hostname(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def _with_mode(url: str, mode: str) -> str:
    try:
        return add_query_param(url, "mode", mode)
    except ValueError:
        return url


def _open_calendar(action: OpenCalendar, ctx: TurnContext, completion: CompletionService | None) -> ChatReply:
    biz = ctx.biz
    if biz.booking_provider == "iframe" and biz.booking_iframe:
        url = _with_mode(biz.booking_iframe, action.mode)
        return ChatReply(
            answer=SILENT_ANSWER,
            iframe=url,
            embed_outcome="iframe",
            embed_provider=_hostname(url),
            suppress_lead_capture=True,
        )
    if biz.booking_provider == "link" and biz.booking_url:
        url = _with_mode(biz.booking_url, action.mode)
        return ChatReply(
            answer=SILENT_ANSWER,
            calendar_link=url,
            embed_outcome="link",
            embed_provider=_hostname(url),
            suppress_lead_capture=True,
        )

    logger.debug("No booking provider for bot %s; asking for a time instead", biz.bot_id)
    text = rewrite_with_tone(completion, NO_PROVIDER_MESSAGE, biz.tone)
    if biz.phone:
        text = f"{text} You can also call us on {biz.phone}."
    return ChatReply(answer=with_lead_preface(ctx, text))


def execute_booking(
    action: Confirm | OpenCalendar,
    ctx: TurnContext,
    completion: CompletionService | None = None,
) -> ChatReply:
    match action:
        case Confirm():
            text = rewrite_with_tone(completion, action.message, ctx.biz.tone)
            return ChatReply(
                answer=with_lead_preface(ctx, text),
                ctas=[
                    Cta(CTA_BOOKING_YES, action.yes_label or "Yes"),
                    Cta(CTA_BOOKING_NO, action.no_label or "No"),
                ],
            )
        case OpenCalendar():
            return _open_calendar(action, ctx, completion)
        case _:
            assert_never(action)

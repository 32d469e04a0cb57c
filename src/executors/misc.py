"""Link and handoff executor."""

from __future__ import annotations

from typing import assert_never

from src.engine.actions import MAPS_URL_SENTINEL, ChatReply, Handoff, ShowLink
from src.executors.context import TurnContext, rewrite_with_tone, with_lead_preface
from src.services.completion import CompletionService


def resolve_link(url: str, ctx: TurnContext) -> str:
    if url == MAPS_URL_SENTINEL:
        return ctx.biz.maps_url or ctx.biz.address or ""
    return url


def execute_misc(
    action: ShowLink | Handoff,
    ctx: TurnContext,
    completion: CompletionService | None = None,
) -> ChatReply:
    text = with_lead_preface(ctx, rewrite_with_tone(completion, action.message, ctx.biz.tone))
    match action:
        case ShowLink():
            link = resolve_link(action.url, ctx)
            return ChatReply(answer=text, link=link or None)
        case Handoff():
            return ChatReply(answer=text)
        case _:
            assert_never(action)

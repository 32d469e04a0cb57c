"""Per-turn context shared by the action executors."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.engine.intents import Intent
from src.engine.models import BizContext, Entities, Turn
from src.engine.state import ConversationState
from src.prompts import LEAD_PREFACE, build_tone_messages
from src.services.completion import CompletionError, CompletionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnContext:
    bot_id: str
    conversation_id: str
    user_text: str
    intent: Intent
    biz: BizContext
    user_id: str | None = None
    history: tuple[Turn, ...] = ()
    entities_before: Entities = field(default_factory=Entities)
    entities: Entities = field(default_factory=Entities)
    state: ConversationState = field(default_factory=ConversationState)

    @property
    def lead_just_completed(self) -> bool:
        return self.state.lead_just_completed


def rewrite_with_tone(completion: CompletionService | None, message: str, tone: str) -> str:
    """Rephrase a canned message in the business tone.

    Returns *message* unchanged when no tone is configured or the
    completion call fails.
    """
    if not tone or not message.strip() or completion is None:
        return message
    try:
        return completion.complete(build_tone_messages(message, tone), operation="tone_rewrite")
    except CompletionError as exc:
        logger.warning("Tone rewrite failed, using canned text: %s", exc)
        return message


def with_lead_preface(ctx: TurnContext, text: str) -> str:
    return f"{LEAD_PREFACE}{text}" if ctx.lead_just_completed else text

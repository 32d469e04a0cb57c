"""Log-and-respond: the single side-effecting exit of a chat turn."""

from __future__ import annotations

import logging

from src.engine.actions import ChatReply
from src.engine.text import preview
from src.services.store import ChatRow, ConversationStore, ConversationStoreError, Lead

logger = logging.getLogger(__name__)


def respond_and_log(
    store: ConversationStore,
    *,
    bot_id: str,
    conversation_id: str,
    user_text: str,
    reply: ChatReply,
    intent: str | None = None,
    user_id: str | None = None,
    lead: Lead | None = None,
) -> dict:
    """Persist the user/assistant row pair (and lead) and return the payload.

    Persistence failures are logged; the visitor still gets the answer.
    """
    rows = [
        ChatRow(bot_id, conversation_id, "user", user_text, user_id=user_id, intent=intent),
        ChatRow(bot_id, conversation_id, "assistant", reply.answer, user_id=user_id),
    ]
    try:
        store.insert_chat_turns(rows)
    except ConversationStoreError as exc:
        logger.error("Chat turn insert failed for %s/%s: %s", bot_id, conversation_id, exc)

    if lead is not None:
        try:
            store.upsert_lead(lead)
            logger.info("Lead saved for %s/%s", bot_id, conversation_id)
        except ConversationStoreError as exc:
            logger.error("Lead upsert failed for %s/%s: %s", bot_id, conversation_id, exc)

    payload = reply.to_payload()
    logger.debug("out → %s", preview(payload, 400))
    return payload

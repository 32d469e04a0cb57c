"""FastAPI route definitions for the dental chat API."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlparse

from fastapi import APIRouter, HTTPException, Request

from src.agent import ChatTurnInput
from src.api.schemas import ChatRequest, ChatResponse, HealthResponse
from src.config import PUBLIC_SITE_URL
from src.engine.models import Turn

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request):
    """Retrieve the chat agent from app state.

    The agent is built once during the FastAPI lifespan (see
    ``server.py``).
    """
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return agent


def host_domain_for(http_request: Request) -> str:
    """Domain the widget is embedded on: Origin, then PUBLIC_SITE_URL, then Host."""
    for candidate in (http_request.headers.get("origin"), PUBLIC_SITE_URL):
        if candidate:
            host = urlparse(candidate).hostname
            if host:
                return host
    return (http_request.headers.get("host") or "").split(":")[0]


def to_turn_input(request: ChatRequest, host_domain: str) -> ChatTurnInput:
    return ChatTurnInput(
        bot_id=request.bot_id,
        conversation_id=request.conversation_id,
        question=request.question,
        history=tuple(Turn(t.role, t.content) for t in request.history),
        user_id=request.user_auth_id,
        visitor_name=request.visitor_name,
        visitor_email=request.visitor_email,
        is_after_hours=request.is_after_hours,
        host_domain=host_domain,
    )


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(request: ChatRequest, http_request: Request):
    """Handle one visitor message and return the widget payload.

    The request carries the whole transcript; the server keeps no
    conversation state between calls.  ``agent.run_turn()`` blocks on the
    Anthropic API and the store, so it runs in the default thread pool.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")
    turn_input = to_turn_input(request, host_domain_for(http_request))

    try:
        payload = await asyncio.to_thread(agent.run_turn, turn_input)
    except Exception as e:
        # Full traceback stays in the server log
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    if not payload or not payload.get("answer"):
        logger.error("[%s] Agent returned an empty payload", request_id)
        raise HTTPException(status_code=500, detail="The assistant produced no response.")

    return ChatResponse(**payload)

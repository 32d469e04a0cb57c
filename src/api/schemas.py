"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HistoryTurn(BaseModel):
    """One transcript entry as the widget stores it."""

    role: Literal["user", "assistant"]
    content: str = Field("", max_length=8000)


class ChatRequest(BaseModel):
    """Incoming chat message from the website widget.

    The widget sends camelCase keys; snake_case is accepted too.
    """

    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1, max_length=2000, description="The visitor's message")
    bot_id: str = Field(..., alias="botId", min_length=1, max_length=64)
    conversation_id: str = Field(..., alias="conversationId", min_length=1, max_length=100)
    user_auth_id: str | None = Field(None, alias="userAuthId", max_length=100)
    history: list[HistoryTurn] = Field(
        default_factory=list,
        max_length=200,
        description="Transcript so far, oldest first, excluding this message",
    )
    visitor_name: str | None = Field(None, alias="visitorName", max_length=100)
    visitor_email: str | None = Field(None, alias="visitorEmail", max_length=254)
    is_after_hours: bool = Field(False, alias="isAfterHours")


class CtaButton(BaseModel):
    id: str
    label: str


class ChatResponse(BaseModel):
    """Reply rendered by the widget.  Empty fields are omitted."""

    answer: str = Field(..., description="The assistant's message")
    ctas: list[CtaButton] | None = None
    iframe: str | None = None
    calendar_link: str | None = None
    link: str | None = None
    embed_outcome: str | None = None
    embed_provider: str | None = None
    suppress_lead_capture: bool | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "dental-chat-assistant"

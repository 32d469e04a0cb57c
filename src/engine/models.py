"""Core value types shared by the engine, the executors and the graph.

Everything here is immutable.  Conversation state is never stored between
requests; it is rebuilt from the transcript on every turn, so these types
only carry what one turn needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant"]
BookingProvider = Literal["iframe", "link", "none"]


@dataclass(frozen=True)
class Turn:
    """One message in the transcript."""

    role: Role
    content: str


@dataclass(frozen=True)
class Entities:
    """Contact and service details accumulated over a conversation."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    service: str | None = None

    @property
    def has_email_or_phone(self) -> bool:
        return bool(self.email or self.phone)

    def is_known(self, key: str) -> bool:
        return bool(getattr(self, key, None))


@dataclass(frozen=True)
class BizContext:
    """Per-turn snapshot of the business the visitor is talking to."""

    bot_id: str
    business_name: str = "Dental Clinic"
    description: str = ""
    tone: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    hours_text: str = ""
    is_open_now: bool = True
    offers: tuple[str, ...] = field(default_factory=tuple)
    services: tuple[str, ...] = field(default_factory=tuple)
    booking_provider: BookingProvider = "none"
    booking_url: str | None = None
    booking_iframe: str | None = None
    maps_url: str | None = None


@dataclass(frozen=True)
class KnowledgeChunk:
    """A retrieved knowledge passage with its relevance score in [0, 1]."""

    text: str
    score: float = 0.0

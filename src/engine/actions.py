"""Engine actions and the reply payload they are turned into.

``Action`` is a closed union of frozen dataclasses; executors dispatch on
it with ``match`` and ``assert_never`` so a new variant cannot be added
without every executor handling it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

from src.engine.models import BizContext, Entities

AskKey = Literal["name", "email", "phone", "service"]
CalendarMode = Literal["booking", "cancel"]

# Placeholder resolved against ``BizContext.maps_url`` by the link executor
MAPS_URL_SENTINEL = "BUSINESS_GOOGLE_MAPS_URL"
# Zero-width space: lets the widget render an embed without visible text
SILENT_ANSWER = "\u200b"


@dataclass(frozen=True)
class Ask:
    key: AskKey
    message: str


@dataclass(frozen=True)
class Confirm:
    message: str
    yes_label: str = "Yes"
    no_label: str = "No"
    key: Literal["booking_confirm"] = "booking_confirm"


@dataclass(frozen=True)
class OpenCalendar:
    message: str = ""
    mode: CalendarMode = "booking"


@dataclass(frozen=True)
class ShowLink:
    url: str
    message: str


@dataclass(frozen=True)
class Freeform:
    """Guidance for the answer step.

    ``verbatim`` messages are sent as-is; the others are hints folded into
    the grounded LLM answer (an empty message means "just answer").
    """

    message: str = ""
    verbatim: bool = False


@dataclass(frozen=True)
class Handoff:
    message: str


Action = Ask | Confirm | OpenCalendar | ShowLink | Freeform | Handoff

Guard = Callable[[BizContext, Entities], bool]


@dataclass(frozen=True)
class GuardedAction:
    """A pipeline entry: an action plus an optional applicability guard."""

    action: Action
    guard: Guard | None = None

    def applies(self, biz: BizContext, entities: Entities) -> bool:
        return self.guard is None or bool(self.guard(biz, entities))


# ── Reply payload ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Cta:
    """A suggested-reply button; its ``id`` comes back as the next message."""

    id: str
    label: str


@dataclass
class ChatReply:
    answer: str
    ctas: list[Cta] = field(default_factory=list)
    iframe: str | None = None
    calendar_link: str | None = None
    link: str | None = None
    embed_outcome: str | None = None
    embed_provider: str | None = None
    suppress_lead_capture: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON body for the widget, without empty fields."""
        payload: dict[str, Any] = {"answer": self.answer}
        if self.ctas:
            payload["ctas"] = [asdict(c) for c in self.ctas]
        for key in ("iframe", "calendar_link", "link", "embed_outcome", "embed_provider",
                    "suppress_lead_capture"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload

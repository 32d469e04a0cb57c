"""Appointment cancellation.

Cancellation never asks for contact details and never offers lead
capture.  A ``cancel_appt:<id>`` button cancels that event through the
calendar provider; anything else that reads as "I want to cancel" gets a
``manage_appointment`` button, which opens the booking page in cancel mode.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from src.engine.actions import ChatReply, Cta
from src.services.calendly_client import CalendlyAPIError

logger = logging.getLogger(__name__)

CANCEL_CTA_PREFIX = "cancel_appt:"
CTA_MANAGE_APPOINTMENT = "manage_appointment"
MANAGE_LABEL = "Manage my appointment"

CANCELLED_MESSAGE = "All set, your appointment has been cancelled. Want to pick a new time?"
CANCEL_FAILED_MESSAGE = (
    "I couldn’t cancel that just now. You can manage your appointment here, "
    "or pick a new time."
)
MANAGE_MESSAGE = "No problem. You can cancel or change your appointment here."

_CANCEL_ID_RE = re.compile(r"^cancel_appt:([A-Za-z0-9-]{8,})$", re.IGNORECASE)
_CANCEL_TEXT_RE = re.compile(
    r"\b(?:cancel|call off)\b.{0,30}\b(?:appointment|appt|booking|visit|it)\b|"
    r"\b(?:need|want|have|would like|like) to cancel\b|"
    r"\b(?:can['’]?t|cannot|can not|won['’]?t be able to) (?:make it|come|attend)\b",
    re.IGNORECASE,
)
_POLICY_RE = re.compile(
    r"\bpolic(?:y|ies)\b|\bfees?\b|\bcharge[sd]?\b|\bpenalt(?:y|ies)\b|"
    r"\bhow (?:much|late|far in advance)\b|\bwhat happens\b|\bnotice\b",
    re.IGNORECASE,
)


class CalendarProvider(Protocol):
    def cancel_event(self, event_uuid: str) -> dict: ...


@dataclass(frozen=True)
class CancelRequest:
    event_id: str | None = None


def parse_cancel_request(text: str) -> CancelRequest | None:
    """Recognise a cancel button or a free-text cancellation request."""
    t = (text or "").strip()
    if t.lower().startswith(CANCEL_CTA_PREFIX):
        m = _CANCEL_ID_RE.match(t)
        return CancelRequest(m.group(1) if m else None)
    if _CANCEL_TEXT_RE.search(t) and not _POLICY_RE.search(t):
        return CancelRequest()
    return None


def is_manage_appointment(text: str) -> bool:
    return (text or "").strip().lower() == CTA_MANAGE_APPOINTMENT


def execute_cancel(request: CancelRequest, calendar: CalendarProvider | None) -> ChatReply:
    manage = [Cta(CTA_MANAGE_APPOINTMENT, MANAGE_LABEL)]
    if not request.event_id or calendar is None:
        return ChatReply(answer=MANAGE_MESSAGE, ctas=manage)

    try:
        calendar.cancel_event(request.event_id)
    except CalendlyAPIError as exc:
        logger.warning("Cancelling event %s failed: %s", request.event_id, exc)
        return ChatReply(answer=CANCEL_FAILED_MESSAGE, ctas=manage)
    except Exception:
        logger.exception("Unexpected error cancelling event %s", request.event_id)
        return ChatReply(answer=CANCEL_FAILED_MESSAGE, ctas=manage)

    logger.info("Event %s cancelled from chat", request.event_id)
    return ChatReply(answer=CANCELLED_MESSAGE, ctas=manage)

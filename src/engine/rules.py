"""Per-intent action pipelines.

Each intent maps to an ordered list of guarded candidate actions; list
order is priority order.  The booking confirm is split into two guarded
variants, one for open hours and one for after hours, and exactly one of
them applies for any ``BizContext``.
"""

from __future__ import annotations

from src.engine.actions import (
    MAPS_URL_SENTINEL,
    Ask,
    Confirm,
    Freeform,
    GuardedAction,
    OpenCalendar,
    ShowLink,
)
from src.engine.intents import Intent

SERVICE_ASK = "What are you looking for today (e.g., cleaning, whitening)?"
NAME_ASK = "What name should I put on this?"
EMAIL_ASK = "What’s the best email for a quick confirmation?"
PHONE_ASK = "And a phone number in case we need to reach you?"

CONFIRM_OPEN = "Want me to open the calendar so you can pick a time?"
CONFIRM_AFTER_HOURS = (
    "We’re closed right now, but I can line it up. "
    "Want me to open the calendar so you can choose a time?"
)
CONFIRM_YES_LABEL = "Yes, show times"
CONFIRM_NO_LABEL = "Not now"


def _ask_service() -> list[GuardedAction]:
    return [GuardedAction(Ask("service", SERVICE_ASK))]


def _collect_lead_basic() -> list[GuardedAction]:
    return [
        GuardedAction(Ask("name", NAME_ASK)),
        GuardedAction(Ask("email", EMAIL_ASK)),
    ]


def _collect_phone() -> list[GuardedAction]:
    return [GuardedAction(Ask("phone", PHONE_ASK))]


def _confirm_booking() -> list[GuardedAction]:
    return [
        GuardedAction(
            Confirm(CONFIRM_OPEN, CONFIRM_YES_LABEL, CONFIRM_NO_LABEL),
            guard=lambda biz, _e: biz.is_open_now is True,
        ),
        GuardedAction(
            Confirm(CONFIRM_AFTER_HOURS, CONFIRM_YES_LABEL, CONFIRM_NO_LABEL),
            guard=lambda biz, _e: biz.is_open_now is not True,
        ),
    ]


def _open_calendar() -> list[GuardedAction]:
    # Without a booking page the remaining asks collect the details instead
    return [
        GuardedAction(
            OpenCalendar("Great—here’s the calendar."),
            guard=lambda biz, _e: biz.booking_provider != "none",
        )
    ]


def _coerce(intent: Intent | str) -> Intent:
    try:
        return Intent(intent)
    except ValueError:
        return Intent.UNKNOWN


def rules_for_intent(intent: Intent | str) -> list[GuardedAction]:
    """Return the ordered candidate actions for *intent*."""
    match _coerce(intent):
        case Intent.BOOKING | Intent.EMERGENCY:
            return [
                *_confirm_booking(),
                *_open_calendar(),
                *_ask_service(),
                *_collect_lead_basic(),
                *_collect_phone(),
            ]
        case Intent.PRICING:
            return [
                GuardedAction(Freeform(
                    "Typical ranges depend on the case. I can share a quick estimate and help you book."
                )),
                *_confirm_booking(),
                *_ask_service(),
                *_open_calendar(),
                *_collect_lead_basic(),
                *_collect_phone(),
            ]
        case Intent.OFFER:
            return [
                GuardedAction(Freeform("Here are our current promotions and how to claim them.")),
                *_confirm_booking(),
                *_ask_service(),
                *_open_calendar(),
                *_collect_lead_basic(),
                *_collect_phone(),
            ]
        case Intent.HOURS:
            return [
                GuardedAction(Freeform(
                    "Here are today’s hours. If you want, I can pull up available times for a quick visit."
                )),
            ]
        case Intent.LOCATION:
            return [GuardedAction(ShowLink(MAPS_URL_SENTINEL, "Here’s our address and directions:"))]
        case _:
            return [
                GuardedAction(Freeform(
                    "Ask me anything and I’ll help. If you’d like, I can show available times too."
                )),
            ]

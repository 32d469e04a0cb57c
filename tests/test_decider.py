"""Tests for the per-intent pipelines, booking signals and the decider."""

from __future__ import annotations

from dataclasses import replace

import pytest

from src.engine.actions import MAPS_URL_SENTINEL, Ask, Confirm, Freeform, OpenCalendar, ShowLink
from src.engine.decider import (
    CTA_BOOKING_NO,
    CTA_BOOKING_YES,
    Signals,
    compute_booking_signals,
    decide_next_action,
)
from src.engine.intents import Intent
from src.engine.models import Entities
from src.engine.rules import (
    CONFIRM_AFTER_HOURS,
    CONFIRM_OPEN,
    EMAIL_ASK,
    NAME_ASK,
    SERVICE_ASK,
    rules_for_intent,
)

# ── Pipelines ────────────────────────────────────────────────────────


class TestPipelines:
    @pytest.mark.parametrize("open_now", [True, False])
    def test_exactly_one_confirm_applies(self, biz, open_now):
        context = replace(biz, is_open_now=open_now)
        confirms = [
            g for g in rules_for_intent(Intent.BOOKING)
            if isinstance(g.action, Confirm) and g.applies(context, Entities())
        ]
        assert len(confirms) == 1
        expected = CONFIRM_OPEN if open_now else CONFIRM_AFTER_HOURS
        assert confirms[0].action.message == expected

    def test_open_calendar_needs_a_provider(self, biz):
        no_provider = replace(biz, booking_provider="none")
        calendar = [g for g in rules_for_intent(Intent.BOOKING) if isinstance(g.action, OpenCalendar)]
        assert calendar[0].applies(biz, Entities())
        assert not calendar[0].applies(no_provider, Entities())

    def test_emergency_shares_the_booking_pipeline(self):
        booking = [type(g.action) for g in rules_for_intent(Intent.BOOKING)]
        emergency = [type(g.action) for g in rules_for_intent(Intent.EMERGENCY)]
        assert booking == emergency

    def test_unknown_label_uses_default_pipeline(self):
        steps = rules_for_intent("not-an-intent")
        assert len(steps) == 1
        assert isinstance(steps[0].action, Freeform)


# ── Booking signals ──────────────────────────────────────────────────


class TestBookingSignals:
    def test_yes_cta(self):
        signals = compute_booking_signals(CTA_BOOKING_YES, "", Intent.BOOKING)
        assert signals.booking_yes and signals.strong_booking_now and signals.user_asked_to_open

    def test_no_cta(self):
        signals = compute_booking_signals(CTA_BOOKING_NO, CONFIRM_OPEN, Intent.UNKNOWN)
        assert signals.booking_no
        assert not signals.booking_yes

    def test_yes_to_calendar_offer(self):
        signals = compute_booking_signals("yes", CONFIRM_OPEN, Intent.FAQ)
        assert signals.assistant_asked_to_open
        assert signals.booking_yes

    def test_not_now_to_calendar_offer(self):
        signals = compute_booking_signals("not now", CONFIRM_OPEN, Intent.FAQ)
        assert signals.booking_no
        assert not signals.booking_yes

    def test_user_asks_to_see_times(self):
        signals = compute_booking_signals("can you show me the calendar", "", Intent.BOOKING)
        assert signals.user_asked_to_open
        assert signals.booking_yes

    def test_soft_ack(self):
        assert compute_booking_signals("ok thanks", "We open at 9.", Intent.UNKNOWN).soft_ack

    def test_plain_question_has_no_booking_signal(self):
        signals = compute_booking_signals("how much is whitening?", "", Intent.PRICING)
        assert not (signals.booking_yes or signals.booking_no or signals.strong_booking_now)


# ── Decider ──────────────────────────────────────────────────────────


class TestDecideNextAction:
    def test_location_shows_maps_link_when_open(self, biz):
        action = decide_next_action(Intent.LOCATION, Entities(), biz, Signals(raw_user_text="where are you?"))
        assert isinstance(action, ShowLink)
        assert action.url == MAPS_URL_SENTINEL

    def test_location_shows_maps_link_when_closed(self, biz):
        closed = replace(biz, is_open_now=False)
        action = decide_next_action(Intent.LOCATION, Entities(), closed, Signals(raw_user_text="where are you?"))
        assert isinstance(action, ShowLink)

    def test_booking_after_hours_confirms(self, biz):
        closed = replace(biz, is_open_now=False)
        action = decide_next_action(Intent.BOOKING, Entities(), closed, Signals(raw_user_text="I want to book"))
        assert action == Confirm(CONFIRM_AFTER_HOURS, "Yes, show times", "Not now")

    def test_yes_after_confirm_opens_calendar(self, biz):
        signals = Signals(booking_yes=True, raw_user_text="yes")
        action = decide_next_action(Intent.BOOKING, Entities(), biz, signals)
        assert isinstance(action, OpenCalendar)
        assert action.mode == "booking"

    def test_decline_returns_verbatim_message_without_rewalking(self, biz):
        signals = Signals(booking_no=True, raw_user_text="not now")
        action = decide_next_action(Intent.BOOKING, Entities(service="whitening"), biz, signals)
        assert isinstance(action, Freeform)
        assert action.verbatim
        assert "whitening" in action.message

    def test_without_provider_yes_walks_to_the_asks(self, biz):
        no_provider = replace(biz, booking_provider="none")
        signals = Signals(booking_yes=True, raw_user_text="yes")
        assert decide_next_action(Intent.BOOKING, Entities(), no_provider, signals) == Ask("service", SERVICE_ASK)

    def test_known_fields_are_skipped(self, biz):
        no_provider = replace(biz, booking_provider="none")
        signals = Signals(booking_yes=True, raw_user_text="Ana")
        entities = Entities(name="Ana", service="cleaning")
        assert decide_next_action(Intent.BOOKING, entities, no_provider, signals) == Ask("email", EMAIL_ASK)

    def test_asked_or_declined_fields_are_not_asked_again(self, biz):
        no_provider = replace(biz, booking_provider="none")
        signals = Signals(
            booking_yes=True,
            raw_user_text="next week works",
            asked_fields=frozenset({"service"}),
            declined_fields=frozenset({"name"}),
        )
        action = decide_next_action(Intent.BOOKING, Entities(), no_provider, signals)
        assert action == Ask("email", EMAIL_ASK)
        assert action != Ask("name", NAME_ASK)

    def test_bare_email_gets_continuation_not_reask(self, biz):
        signals = Signals(booking_yes=True, raw_user_text="john@example.com")
        entities = Entities(name="John", email="john@example.com", service="cleaning")
        action = decide_next_action(Intent.BOOKING, entities, biz, signals)
        assert isinstance(action, Freeform)
        assert action.verbatim
        assert "saved your details" in action.message
        assert "email" not in action.message.lower()

    def test_low_signal_without_asks_just_answers(self, biz):
        signals = Signals(soft_ack=True, raw_user_text="ok")
        assert decide_next_action(Intent.HOURS, Entities(), biz, signals) == Freeform("")

    def test_pricing_starts_with_answer_hint(self, biz):
        action = decide_next_action(Intent.PRICING, Entities(), biz, Signals(raw_user_text="how much is a crown?"))
        assert isinstance(action, Freeform)
        assert not action.verbatim
        assert action.message

    def test_unknown_intent_degrades_to_default_freeform(self, biz):
        action = decide_next_action("mystery", Entities(), biz, Signals(raw_user_text="tell me a story"))
        assert isinstance(action, Freeform)

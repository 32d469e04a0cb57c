"""Tests for intent classification (keyword rules and the LLM router)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage

from src.engine.intents import (
    Intent,
    LLMIntentClassifier,
    RuleBasedIntentClassifier,
    apply_emergency_override,
    build_intent_classifier,
)


@pytest.fixture
def rules():
    return RuleBasedIntentClassifier()


# ── Keyword rules ────────────────────────────────────────────────────


class TestRuleBasedClassifier:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Can I book a cleaning?", Intent.BOOKING),
            ("Do you have anything tomorrow?", Intent.BOOKING),
            ("Is 3pm free?", Intent.BOOKING),
            ("How much is whitening?", Intent.PRICING),
            ("Do you take Delta insurance?", Intent.INSURANCE),
            ("What time do you close?", Intent.HOURS),
            ("Where is the clinic?", Intent.LOCATION),
            ("Any promotions at the moment?", Intent.OFFER),
            ("What treatments do you provide?", Intent.SERVICES),
            ("Tell me about invisalign", Intent.FAQ),
            ("hello", Intent.GENERAL),
            ("??", Intent.UNKNOWN),
        ],
    )
    def test_keyword_rules(self, rules, text, expected):
        assert rules.classify(text) == expected

    def test_booking_beats_pricing(self, rules):
        assert rules.classify("how much is it to book a check-up") == Intent.BOOKING

    def test_pain_is_emergency(self, rules):
        assert rules.classify("my tooth hurts") == Intent.EMERGENCY

    def test_yes_after_booking_offer_is_booking(self, rules):
        last = "Want me to open the calendar so you can pick a time?"
        assert rules.classify("yes please", last) == Intent.BOOKING

    def test_yes_without_offer_is_not_booking(self, rules):
        assert rules.classify("yes please", "We are open until 6pm.") != Intent.BOOKING


class TestEmergencyOverride:
    def test_override_wins_over_any_label(self):
        assert apply_emergency_override(Intent.PRICING, "how much for a broken tooth") == Intent.EMERGENCY

    def test_override_leaves_other_text_alone(self):
        assert apply_emergency_override(Intent.HOURS, "when do you open") == Intent.HOURS

    def test_rules_apply_override_after_booking(self, rules):
        assert rules.classify("can I book, I have a swollen jaw") == Intent.EMERGENCY


# ── LLM router ───────────────────────────────────────────────────────


def _llm_returning(content: str) -> MagicMock:
    llm = MagicMock()
    llm.invoke.return_value = AIMessage(content=content)
    return llm


class TestLLMIntentClassifier:
    def test_returns_router_label(self):
        classifier = LLMIntentClassifier(llm=_llm_returning("pricing"))
        assert classifier.classify("what would that run me?") == Intent.PRICING

    def test_label_is_normalised(self):
        classifier = LLMIntentClassifier(llm=_llm_returning("Hours.\n"))
        assert classifier.classify("are you around on saturday") == Intent.HOURS

    def test_unknown_label_falls_back_to_rules(self):
        classifier = LLMIntentClassifier(llm=_llm_returning("definitely-not-a-label"))
        assert classifier.classify("How much is whitening?") == Intent.PRICING

    def test_router_failure_falls_back_to_rules(self):
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("overloaded")
        fallback = MagicMock()
        fallback.classify.return_value = Intent.LOCATION
        classifier = LLMIntentClassifier(llm=llm, fallback=fallback)

        assert classifier.classify("where are you", "Hi!") == Intent.LOCATION
        fallback.classify.assert_called_once_with("where are you", "Hi!")

    def test_emergency_override_applies_to_router_label(self):
        classifier = LLMIntentClassifier(llm=_llm_returning("faq"))
        assert classifier.classify("I knocked out a tooth") == Intent.EMERGENCY

    def test_previous_assistant_message_is_in_prompt(self):
        llm = _llm_returning("booking")
        LLMIntentClassifier(llm=llm).classify("yes", "Want me to open the calendar?")
        prompt = llm.invoke.call_args[0][0][0].content
        assert "Want me to open the calendar?" in prompt
        assert "Latest message: yes" in prompt


class TestBuildIntentClassifier:
    def test_rules_by_default(self):
        assert isinstance(build_intent_classifier("rules"), RuleBasedIntentClassifier)

    @patch("src.engine.intents._build_router_llm")
    def test_llm_mode(self, mock_build):
        mock_build.return_value = _llm_returning("faq")
        assert isinstance(build_intent_classifier("llm"), LLMIntentClassifier)

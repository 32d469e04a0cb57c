"""LangGraph turn orchestrator for the dental chat assistant.

Architecture:
  Every inbound message is one run of a compiled ``StateGraph``.  There
  is no checkpointer: the transcript the widget sends with each request
  is the only conversation state, and everything else (entities, intent,
  capture state, the next action) is re-derived from it.

    1. **inspect**      — spots cancellation requests before anything else
    2. **cancel**       — capture-free cancellation (calendar provider call)
    3. **prepare**      — business context, entities, intent, capture state,
                          booking signals and the decided next action
    4. **lead_capture** — capture replies and pipeline asks
    5. **booking**      — booking confirm and opening the calendar
    6. **misc**         — maps link and handoff
    7. **answer**       — knowledge retrieval, coverage gate, grounded
                          answer, proactive capture offers
    8. **respond**      — persists the turn and builds the payload

  Routing:
    inspect → (cancel?) → cancel ───────────────────────────┐
            → prepare → lead_capture | booking | misc | answer ┴→ respond → END

  ``respond`` is the only node with persistence side effects and runs
  exactly once per message, including when an earlier node failed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, assert_never

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from src.config import INTENT_CLASSIFIER
from src.engine.actions import (
    Action,
    Ask,
    ChatReply,
    Confirm,
    Freeform,
    Handoff,
    OpenCalendar,
    ShowLink,
)
from src.engine.coverage import assemble_knowledge, filter_chunks, kb_covers_question
from src.engine.decider import (
    CTA_BOOKING_NO,
    CTA_BOOKING_YES,
    CTA_OPEN_CALENDAR,
    BookingSignals,
    Signals,
    compute_booking_signals,
    decide_next_action,
)
from src.engine.entities import extract_entities
from src.engine.intents import (
    Intent,
    IntentClassifier,
    RuleBasedIntentClassifier,
    build_intent_classifier,
)
from src.engine.models import BizContext, Turn
from src.engine.rules import EMAIL_ASK, NAME_ASK, PHONE_ASK, SERVICE_ASK
from src.engine.state import (
    CTA_EMAIL_NO,
    CTA_EMAIL_YES,
    CTA_NAME_NO,
    CTA_NAME_YES,
    CaptureReply,
    derive_conversation_state,
)
from src.engine.text import (
    has_booking_language,
    is_capture_ish,
    is_low_signal,
    last_assistant_text,
    last_meaningful_user_text,
    preview,
    strip_early_booking_language,
)
from src.executors.booking import execute_booking
from src.executors.cancel import (
    CalendarProvider,
    CancelRequest,
    execute_cancel,
    is_manage_appointment,
    parse_cancel_request,
)
from src.executors.context import TurnContext
from src.executors.lead_capture import ask_reply, build_lead, capture_reply, offer_capture
from src.executors.misc import execute_misc
from src.executors.respond import respond_and_log
from src.prompts import (
    SAFE_FALLBACK_ANSWER,
    build_answer_messages,
    build_system_prompt,
    get_fallback_template,
)
from src.services.business import BusinessContextLoader, JsonBusinessContextLoader, default_business_context
from src.services.calendly_client import get_calendly_client
from src.services.completion import AnthropicCompletionService, CompletionError, CompletionService
from src.services.knowledge import KnowledgeRetriever, MarkdownKnowledgeRetriever
from src.services.metrics import metrics
from src.services.store import ConversationStore, Lead, build_conversation_store

logger = logging.getLogger(__name__)

_LEAD_CTAS = frozenset({CTA_NAME_YES, CTA_NAME_NO, CTA_EMAIL_YES, CTA_EMAIL_NO})
_BOOKING_CTAS = frozenset({CTA_BOOKING_YES, CTA_OPEN_CALENDAR})
_PIPELINE_ASKS = (SERVICE_ASK, NAME_ASK, EMAIL_ASK, PHONE_ASK)
_FLOW_INTENTS = (Intent.BOOKING, Intent.EMERGENCY, Intent.PRICING, Intent.OFFER)
_EARLY_TURNS = 2

_rules = RuleBasedIntentClassifier()


# ── Inputs and dependencies ──────────────────────────────────────────


@dataclass(frozen=True)
class ChatTurnInput:
    """One inbound message plus the transcript snapshot it arrived with."""

    bot_id: str
    conversation_id: str
    question: str
    history: tuple[Turn, ...] = ()
    user_id: str | None = None
    visitor_name: str | None = None
    visitor_email: str | None = None
    is_after_hours: bool = False
    host_domain: str = ""


@dataclass
class ChatDependencies:
    """Collaborators the graph talks to; swap any of them in tests."""

    classifier: IntentClassifier
    retriever: KnowledgeRetriever
    business: BusinessContextLoader
    completion: CompletionService
    store: ConversationStore
    calendar: CalendarProvider | None = None


def build_default_dependencies() -> ChatDependencies:
    return ChatDependencies(
        classifier=build_intent_classifier(INTENT_CLASSIFIER),
        retriever=MarkdownKnowledgeRetriever(),
        business=JsonBusinessContextLoader(),
        completion=AnthropicCompletionService(),
        store=build_conversation_store(),
        calendar=get_calendly_client(),
    )


# ── State schema ─────────────────────────────────────────────────────


class ChatState(TypedDict, total=False):
    """What flows through the graph for a single turn.

    ``route`` names the executor that produced ``reply`` and doubles as
    the metric dimension; ``fallback`` means a node failed and the safe
    answer was substituted.
    """

    turn_id: str
    request: ChatTurnInput
    cancel: CancelRequest | None
    ctx: TurnContext
    action: Action
    capture: CaptureReply | None
    signals: BookingSignals
    route: str
    reply: ChatReply
    lead: Lead | None
    payload: dict[str, Any]


def _dbg(turn_id: str, label: str, data: Any) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("[%s] %s → %s", turn_id, label, preview(data, 300))


def _safe(name: str, fn):
    """Wrap a node so an unexpected failure becomes the safe fallback reply."""

    def node(state: ChatState) -> dict:
        try:
            return fn(state)
        except Exception:
            logger.exception("[%s] %s node failed", state.get("turn_id", "?"), name)
            metrics.record_fallback(name)
            return {"route": "fallback", "reply": ChatReply(answer=SAFE_FALLBACK_ANSWER)}

    node.__name__ = f"{name}_node"
    return node


# ── Intent helpers ───────────────────────────────────────────────────


def _in_pipeline_flow(last_assistant: str) -> bool:
    return any(ask in last_assistant for ask in _PIPELINE_ASKS)


def _flow_intent(history: tuple[Turn, ...]) -> Intent:
    """Intent of the request that started the current ask sequence."""
    for turn in reversed(history):
        if turn.role != "user":
            continue
        if turn.content.strip().lower() in _BOOKING_CTAS:
            return Intent.BOOKING
        intent = _rules.classify(turn.content)
        if intent in _FLOW_INTENTS:
            return intent
    return Intent.BOOKING


def _classify(classifier: IntentClassifier, text: str, last_assistant: str) -> Intent:
    token = text.strip().lower()
    if token in _BOOKING_CTAS or is_manage_appointment(token):
        return Intent.BOOKING
    if token in _LEAD_CTAS or token == CTA_BOOKING_NO:
        return Intent.UNKNOWN
    try:
        return classifier.classify(text, last_assistant)
    except Exception:
        logger.exception("Intent classifier failed, using keyword rules")
        return _rules.classify(text, last_assistant)


def _intent_for_action(
    classifier: IntentClassifier,
    intent: Intent,
    request: ChatTurnInput,
) -> Intent:
    text = request.question
    if intent in (Intent.BOOKING, Intent.EMERGENCY):
        return intent
    capture_ish = is_capture_ish(text)
    if (capture_ish and not has_booking_language(text)) or is_low_signal(text):
        previous = last_meaningful_user_text(request.history, "", skip_contacts=True)
        if previous:
            return _classify(classifier, previous, "")
    return intent


# ── Nodes ────────────────────────────────────────────────────────────


def _make_inspect_node():
    def inspect_node(state: ChatState) -> dict:
        request = state["request"]
        cancel = parse_cancel_request(request.question)
        _dbg(state["turn_id"], "inspect", {"question": request.question, "cancel": cancel})
        return {"cancel": cancel}

    return inspect_node


def _make_cancel_node(deps: ChatDependencies):
    def cancel_node(state: ChatState) -> dict:
        reply = execute_cancel(state["cancel"], deps.calendar)
        _dbg(state["turn_id"], "cancel", reply.to_payload())
        return {"route": "cancel", "reply": reply}

    return cancel_node


def _load_biz(deps: ChatDependencies, request: ChatTurnInput) -> BizContext:
    try:
        return deps.business.load(request.bot_id, request.is_after_hours, request.host_domain)
    except Exception:
        logger.exception("Business context load failed for %s; using defaults", request.bot_id)
        return default_business_context(request.bot_id, request.is_after_hours)


def _route_for(action: Action) -> str:
    match action:
        case Ask():
            return "lead_capture"
        case Confirm() | OpenCalendar():
            return "booking"
        case ShowLink() | Handoff():
            return "misc"
        case Freeform():
            return "answer"
        case _:
            assert_never(action)


def _make_prepare_node(deps: ChatDependencies):
    def prepare_node(state: ChatState) -> dict:
        turn_id = state["turn_id"]
        request = state["request"]
        history = request.history
        text = request.question.strip()
        last_assistant = last_assistant_text(history)

        biz = _load_biz(deps, request)
        entities_before = extract_entities(
            history, "", visitor_name=request.visitor_name, visitor_email=request.visitor_email,
        )
        entities = extract_entities(
            history, text, visitor_name=request.visitor_name, visitor_email=request.visitor_email,
        )

        in_flow = _in_pipeline_flow(last_assistant)
        intent = _classify(deps.classifier, text, last_assistant)
        if in_flow and intent not in (Intent.BOOKING, Intent.EMERGENCY):
            intent_for_action = _flow_intent(history)
        else:
            intent_for_action = _intent_for_action(deps.classifier, intent, request)

        conv = derive_conversation_state(history, text, entities_before, entities, intent_for_action)
        signals = compute_booking_signals(text, last_assistant, intent)
        # Mid-sequence replies already passed the confirm
        booking_yes = signals.booking_yes or (in_flow and not signals.booking_no)

        ctx = TurnContext(
            bot_id=request.bot_id,
            conversation_id=request.conversation_id,
            user_text=text,
            intent=intent_for_action,
            biz=biz,
            user_id=request.user_id,
            history=history,
            entities_before=entities_before,
            entities=entities,
            state=conv,
        )
        _dbg(turn_id, "prepare", {
            "intent": str(intent), "intent_for_action": str(intent_for_action),
            "entities": entities, "pending": conv.pending_prompt, "in_flow": in_flow,
            "signals": signals,
        })

        if is_manage_appointment(text):
            action: Action = OpenCalendar(mode="cancel")
            return {"ctx": ctx, "signals": signals, "action": action, "route": "booking"}

        if conv.capture_reply is not None:
            _dbg(turn_id, "capture_reply", conv.capture_reply)
            return {"ctx": ctx, "signals": signals, "capture": conv.capture_reply, "route": "lead_capture"}

        decider_signals = Signals(
            booking_yes=booking_yes,
            booking_no=signals.booking_no,
            soft_ack=signals.soft_ack,
            raw_user_text=text,
            asked_fields=conv.asked_fields,
            declined_fields=conv.declined_fields,
        )
        action = decide_next_action(intent_for_action, entities, biz, decider_signals)

        booking_now = signals.strong_booking_now or booking_yes or signals.user_asked_to_open
        if booking_now and isinstance(action, Freeform) and not action.verbatim:
            action = decide_next_action(Intent.BOOKING, entities, biz, decider_signals)
            _dbg(turn_id, "booking_override", action)

        _dbg(turn_id, "action", action)
        return {"ctx": ctx, "signals": signals, "action": action, "route": _route_for(action)}

    return prepare_node


def _make_lead_capture_node():
    def lead_capture_node(state: ChatState) -> dict:
        capture = state.get("capture")
        if capture is not None:
            return {"reply": capture_reply(capture)}
        return {"reply": ask_reply(state["action"])}

    return lead_capture_node


def _make_booking_node(deps: ChatDependencies):
    def booking_node(state: ChatState) -> dict:
        return {"reply": execute_booking(state["action"], state["ctx"], deps.completion)}

    return booking_node


def _make_misc_node(deps: ChatDependencies):
    def misc_node(state: ChatState) -> dict:
        return {"reply": execute_misc(state["action"], state["ctx"], deps.completion)}

    return misc_node


def _grounded_answer(deps: ChatDependencies, state: ChatState, action: Freeform) -> str:
    turn_id = state["turn_id"]
    ctx = state["ctx"]
    signals = state["signals"]
    text = ctx.user_text

    query = text
    if is_capture_ish(text):
        query = last_meaningful_user_text(ctx.history, text, skip_contacts=True) or text

    try:
        chunks = deps.retriever.search(ctx.bot_id, query)
    except Exception as exc:
        logger.warning("[%s] Knowledge search failed: %s", turn_id, exc)
        metrics.record_failure("knowledge", "search", error_type=type(exc).__name__)
        chunks = []

    kept = filter_chunks(chunks)
    knowledge = assemble_knowledge(ctx.biz.description, kept)
    covered = kb_covers_question(query, knowledge, kept)
    _dbg(turn_id, "coverage", {"query": query, "chunks": len(chunks), "kept": len(kept), "covered": covered})
    if not covered:
        return get_fallback_template(ctx.intent, ctx.biz)

    system = build_system_prompt(
        ctx.biz,
        ctx.intent,
        next_step=action.message,
        after_hours=not ctx.biz.is_open_now and not signals.booking_no,
    )
    messages = build_answer_messages(system, knowledge, ctx.history, text)
    try:
        return deps.completion.complete(messages, operation="answer")
    except CompletionError as exc:
        logger.warning("[%s] Answer completion failed: %s", turn_id, exc)
        return get_fallback_template(ctx.intent, ctx.biz)


def _make_answer_node(deps: ChatDependencies):
    def answer_node(state: ChatState) -> dict:
        action = state["action"]
        if action.verbatim:
            return {"reply": ChatReply(answer=action.message)}

        ctx = state["ctx"]
        signals = state["signals"]
        answer = _grounded_answer(deps, state, action)

        booking_now = ctx.intent == Intent.BOOKING or signals.strong_booking_now or signals.booking_yes
        early = ctx.state.assistant_turns < _EARLY_TURNS and not ctx.state.declined_name
        if not booking_now and early and has_booking_language(answer):
            answer = strip_early_booking_language(answer).strip() or answer

        return {"reply": offer_capture(answer, ctx)}

    return answer_node


def _make_respond_node(deps: ChatDependencies):
    def respond_node(state: ChatState) -> dict:
        request = state["request"]
        ctx = state.get("ctx")
        reply = state.get("reply") or ChatReply(answer=SAFE_FALLBACK_ANSWER)
        route = state.get("route", "fallback")
        if route == "cancel":
            intent = "cancel"
        else:
            intent = str(ctx.intent) if ctx is not None else None

        lead = None
        if ctx is not None and route != "fallback":
            try:
                lead = build_lead(ctx)
            except Exception:
                logger.exception("[%s] Lead build failed", state["turn_id"])

        payload = respond_and_log(
            deps.store,
            bot_id=request.bot_id,
            conversation_id=request.conversation_id,
            user_text=request.question,
            reply=reply,
            intent=intent,
            user_id=request.user_id,
            lead=lead,
        )
        metrics.record_turn(route, intent or "unknown")
        _dbg(state["turn_id"], "respond", {"route": route, "intent": intent, "lead": lead is not None})
        return {"payload": payload, "lead": lead}

    return respond_node


# ── Conditional edges ────────────────────────────────────────────────


def route_after_inspect(state: ChatState) -> str:
    if state.get("reply") is not None:
        return "respond"
    return "cancel" if state.get("cancel") is not None else "prepare"


def route_after_prepare(state: ChatState) -> str:
    if state.get("reply") is not None:
        return "respond"
    return state.get("route", "answer")


# ── Graph assembly ───────────────────────────────────────────────────


def build_graph(deps: ChatDependencies):
    graph = StateGraph(ChatState)

    graph.add_node("inspect", _safe("inspect", _make_inspect_node()))
    graph.add_node("cancel", _safe("cancel", _make_cancel_node(deps)))
    graph.add_node("prepare", _safe("prepare", _make_prepare_node(deps)))
    graph.add_node("lead_capture", _safe("lead_capture", _make_lead_capture_node()))
    graph.add_node("booking", _safe("booking", _make_booking_node(deps)))
    graph.add_node("misc", _safe("misc", _make_misc_node(deps)))
    graph.add_node("answer", _safe("answer", _make_answer_node(deps)))
    graph.add_node("respond", _make_respond_node(deps))

    graph.set_entry_point("inspect")
    graph.add_conditional_edges(
        "inspect",
        route_after_inspect,
        {"cancel": "cancel", "prepare": "prepare", "respond": "respond"},
    )
    graph.add_conditional_edges(
        "prepare",
        route_after_prepare,
        {
            "lead_capture": "lead_capture",
            "booking": "booking",
            "misc": "misc",
            "answer": "answer",
            "respond": "respond",
        },
    )
    for node in ("cancel", "lead_capture", "booking", "misc", "answer"):
        graph.add_edge(node, "respond")
    graph.add_edge("respond", END)

    return graph.compile()


@dataclass
class ChatAgent:
    """Compiled graph plus the collaborators it was built with."""

    deps: ChatDependencies
    graph: Any = field(init=False)

    def __post_init__(self) -> None:
        self.graph = build_graph(self.deps)

    def run_turn(self, request: ChatTurnInput) -> dict[str, Any]:
        """Handle one inbound message and return the widget payload."""
        turn_id = uuid.uuid4().hex[:8]
        _dbg(turn_id, "in", {"bot": request.bot_id, "conversation": request.conversation_id,
                             "question": request.question, "history": len(request.history)})
        try:
            result = self.graph.invoke({"turn_id": turn_id, "request": request})
        except Exception:
            logger.exception("[%s] Chat graph failed", turn_id)
            return ChatReply(answer=SAFE_FALLBACK_ANSWER).to_payload()
        return result.get("payload") or ChatReply(answer=SAFE_FALLBACK_ANSWER).to_payload()


def create_chat_agent(deps: ChatDependencies | None = None) -> ChatAgent:
    """Build the chat agent with default collaborators unless *deps* is given."""
    agent = ChatAgent(deps or build_default_dependencies())
    logger.debug("Chat graph compiled (classifier: %s)", type(agent.deps.classifier).__name__)
    return agent

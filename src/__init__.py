"""Dental chat assistant — the conversation engine behind a clinic's website chat.

Architecture Overview
=====================

Each inbound message runs once through a **LangGraph** ``StateGraph``
(``src/agent.py``).  The widget sends the full transcript with every
request, and all conversation state is re-derived from it:

1. **inspect** — cancellation requests are split off first and handled
   without any lead capture.
2. **prepare** — business context, entity extraction, intent
   classification, capture-state derivation and booking signals feed a
   rule-table decider that picks exactly one next action.
3. **executors** — lead capture, booking, maps/handoff, or a grounded
   answer (knowledge retrieval, coverage gate, Claude completion).
4. **respond** — persists the user/assistant row pair and any new lead,
   then returns the widget payload.

Key Design Decisions
--------------------
- **Stateless server**: transcript replay instead of a checkpointer, so any
  worker can serve any message.
- **Grounding**: answers come from per-bot Markdown knowledge; when
  coverage is weak a canned template is returned and the LLM is not called.
- **Booking hand-off**: calendars are embedded when the provider allows
  framing, otherwise linked.  Calendly cancellations go through its REST API.
- **Resilience**: every collaborator failure degrades to a safe canned reply;
  the turn is still logged exactly once.

Package Structure
-----------------
- ``src/agent.py`` — LangGraph turn orchestrator
- ``src/config.py`` — Centralized configuration from environment variables
- ``src/prompts.py`` — System prompt, fallback templates, message assembly
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/engine/`` — Pure conversation logic (entities, intents, rules, state)
- ``src/executors/`` — Turn executors producing the reply payload
- ``src/services/`` — External collaborators (Anthropic, Calendly, store,
  knowledge, business profiles, metrics)
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""

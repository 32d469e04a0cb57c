"""CLI entry point for the dental chat assistant.

A terminal chat for testing and development.  The transcript is kept
locally and sent with every message, exactly as the website widget does.
For production, use the FastAPI server (src/server.py).

Usage:
    uv run python -m src.main                       # normal mode (quiet)
    uv run python -m src.main --debug               # show turn traces and API calls
    uv run python -m src.main --bot demo-dental --after-hours
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from src.engine.actions import SILENT_ANSWER
from src.engine.models import Turn

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_reply(payload: dict) -> list[str]:
    """Render a reply payload; returns the CTA ids in display order."""
    answer = payload.get("answer", "")
    if answer and answer != SILENT_ANSWER:
        print(f"\nAssistant: {answer}")
    for key, label in (("iframe", "Calendar"), ("calendar_link", "Booking page"), ("link", "Link")):
        if payload.get(key):
            print(f"  [{label}] {payload[key]}")
    ids = []
    for i, cta in enumerate(payload.get("ctas") or [], start=1):
        print(f"  ({i}) {cta['label']}")
        ids.append(cta["id"])
    print()
    return ids


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Dental chat assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including per-turn traces",
    )
    parser.add_argument("--bot", default="demo-dental", help="Business profile id")
    parser.add_argument(
        "--after-hours", action="store_true",
        help="Pretend the clinic is closed",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    # Config reads the environment at import time
    from src.agent import ChatTurnInput, create_chat_agent

    print("\n" + "=" * 60)
    print("  Dental Chat Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Type a button number to press it.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    agent = create_chat_agent()
    conversation_id = str(uuid.uuid4())
    history: list[Turn] = []
    buttons: list[str] = []
    logger.info("Started new conversation: %s", conversation_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye! Have a great day!")
            break

        if user_input.lower() == "new":
            conversation_id = str(uuid.uuid4())
            history.clear()
            buttons = []
            print(f"\n>> New conversation started: {conversation_id[:8]}...\n")
            continue

        if user_input.isdigit() and 0 < int(user_input) <= len(buttons):
            user_input = buttons[int(user_input) - 1]

        turn = ChatTurnInput(
            bot_id=args.bot,
            conversation_id=conversation_id,
            question=user_input,
            history=tuple(history),
            is_after_hours=args.after_hours,
            host_domain="localhost",
        )
        try:
            payload = agent.run_turn(turn)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break

        history.append(Turn("user", user_input))
        history.append(Turn("assistant", payload.get("answer", "")))
        buttons = _print_reply(payload)


if __name__ == "__main__":
    main()

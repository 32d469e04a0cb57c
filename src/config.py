"""Centralized configuration for the dental chat assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/dental-chat/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415 — lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/dental-chat/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _optional_env(name: str) -> str | None:
    """Return a config value from env-var or SSM, or ``None`` when unset."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        return _get_ssm_parameter(name)
    return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = _optional_env(name)
    if value:
        return value
    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /dental-chat/{name} (AWS)."
    )


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-haiku-4-5")

# Cheap models for intent classification and tone rewrites
ROUTER_MODEL_NAME: str = os.getenv("ROUTER_MODEL_NAME", "claude-haiku-4-5")
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")
COMPLETION_TEMPERATURE: float = float(os.getenv("COMPLETION_TEMPERATURE", "0.3"))

# "rules" (keyword engine) or "llm" (router model with rule fallback)
INTENT_CLASSIFIER: str = os.getenv("INTENT_CLASSIFIER", "rules").lower()

# ── Calendly ────────────────────────────────────────────────────────
CALENDLY_API_TOKEN: str | None = _optional_env("CALENDLY_API_TOKEN")
CALENDLY_BASE_URL: str = "https://api.calendly.com"

# ── Knowledge & business profiles ───────────────────────────────────
KNOWLEDGE_DIR: Path = Path(os.getenv("KNOWLEDGE_DIR", str(_PROJECT_ROOT / "knowledge")))
BUSINESS_PROFILES_PATH: Path = Path(
    os.getenv("BUSINESS_PROFILES_PATH", str(_PROJECT_ROOT / "knowledge" / "businesses.json"))
)
PUBLIC_SITE_URL: str = os.getenv("PUBLIC_SITE_URL", "")

# Probe booking pages for X-Frame-Options / CSP before embedding them
EMBED_PROBE_ENABLED: bool = _flag("EMBED_PROBE_ENABLED", "true")
EMBED_PROBE_TTL_SECONDS: int = int(os.getenv("EMBED_PROBE_TTL_SECONDS", "3600"))

# ── Conversation store ──────────────────────────────────────────────
# "memory" (process-local) or "supabase" (PostgREST over HTTPS)
STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory").lower()
SUPABASE_URL: str | None = _optional_env("SUPABASE_URL")
SUPABASE_KEY: str | None = _optional_env("SUPABASE_KEY")

# ── Lead capture throttle ───────────────────────────────────────────
CAPTURE_MAX_ASKS: int = 2
CAPTURE_COOLDOWN_TURNS: int = 6

# ── Knowledge coverage gate ─────────────────────────────────────────
COVERAGE_MIN_SCORE: float = 0.72
COVERAGE_MIN_CHARS: int = 400
COVERAGE_MIN_OVERLAP: int = 2
COVERAGE_MIN_VOLUME: int = 200
COVERAGE_MAX_CHUNKS: int = 5

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

# Requests per client IP per minute on POST /api/chat; 0 disables the limit
CHAT_RATE_LIMIT_PER_MINUTE: int = int(os.getenv("CHAT_RATE_LIMIT_PER_MINUTE", "10"))

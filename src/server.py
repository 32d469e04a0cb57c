"""FastAPI server for the dental website chat assistant.

The embeddable widget on a clinic's site posts every visitor message,
together with the transcript so far, to ``POST /api/chat``.

Run with:
    uv run uvicorn src.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from src.agent import create_chat_agent
from src.api.rate_limit import RateLimitMiddleware
from src.api.routes import router
from src.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT, STORE_BACKEND
from src.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ─────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the chat graph and its collaborators once per process.

    The graph holds no conversation state, so one instance serves every
    request thread.
    """
    logger.info("Building chat agent (store backend: %s)…", STORE_BACKEND)
    application.state.agent = create_chat_agent()
    logger.info("Chat agent ready.")
    yield
    # Buffered metrics would otherwise be lost on a rolling deploy
    metrics.flush()
    application.state.agent = None


app = FastAPI(
    title="Dental Chat Assistant",
    description=(
        "Website chat assistant for dental clinics: grounded answers, "
        "lead capture and booking hand-off."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Per-IP limit on POST /api/chat ─────────────────────────────────
# Registered before CORS so 429 responses still carry CORS headers
app.add_middleware(RateLimitMiddleware)

# ── CORS (clinic websites embedding the widget) ──────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Tag each request with an ID and log it with its duration.

    A widget-supplied ``X-Request-ID`` is reused so browser and server
    logs line up; the ID is always echoed back in the response.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "[%s] %s %s → %d (%.0fms)",
        request_id, request.method, request.url.path, response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Service info for widget set-up and uptime checks."""
    return {
        "service": "Dental Chat Assistant",
        "version": app.version,
        "chat": "/api/chat",
        "health": "/api/health",
        "docs": "/docs",
    }


if __name__ == "__main__":
    logger.info("Starting dental chat API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "src.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )

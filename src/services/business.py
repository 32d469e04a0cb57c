"""Business context loading.

Profiles live in a JSON file keyed by bot id (``BUSINESS_PROFILES_PATH``)::

    {
      "demo-dental": {
        "business_name": "Bright Smile Dental",
        "calendar_url": "https://calendly.com/bright-smile/checkup",
        "location": "12 High Street, Dublin",
        ...
      }
    }

Loading a profile turns it into a ``BizContext`` for one turn:

* the booking URL is normalised for embedding (Calendly gets
  ``embed_domain``/``embed_type``, cal.com-style pages get ``embed=true``,
  Google and Microsoft booking pages are link-only);
* embeddable pages are probed for ``X-Frame-Options`` and CSP
  ``frame-ancestors`` and downgraded to a link when framing is refused;
  probe results are cached with a TTL;
* a Google Maps search URL is built from the address;
* ``is_open_now`` is the inverse of the caller's after-hours flag.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from src.config import (
    BUSINESS_PROFILES_PATH,
    EMBED_PROBE_ENABLED,
    EMBED_PROBE_TTL_SECONDS,
)
from src.engine.models import BizContext, BookingProvider
from src.services.cache import TTLCache
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

NO_EMBED_MARKER = "#NO_EMBED"
PROBE_TIMEOUT_SECONDS = 5.0
DEFAULT_SERVICES = ("cleaning", "filling", "crown", "braces")
DEFAULT_HOURS_TEXT = "Mon–Fri 9–17"

_EMBED_TRUE_RE = re.compile(
    r"(^|\.)cal\.com|tidycal\.com|youcanbook\.me|hubspot\.(com|net)/meetings|acuityscheduling\.com|as\.me",
    re.IGNORECASE,
)
_LINK_ONLY_RE = re.compile(
    r"calendar\.google\.com|google\.[^/]+/bookings|microsoft\.com/bookings|vcita\.com",
    re.IGNORECASE,
)
_FRAME_ANCESTORS_RE = re.compile(r"frame-ancestors\s([^;]+)")


class BusinessNotFoundError(Exception):
    """Raised when no profile exists for a bot id."""


class BusinessContextLoader(Protocol):
    def load(self, bot_id: str, is_after_hours: bool, host_domain: str) -> BizContext: ...


# ── URL helpers ──────────────────────────────────────────────────────


def add_query_param(url: str, key: str, value: str) -> str:
    """Set ``key=value`` on *url* unless the key is already present."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(k == key for k, _ in query):
        return url
    query.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def to_embed_url(raw: str, host_domain: str) -> str:
    """Normalise a booking URL for iframe use.

    Link-only providers come back with a ``#NO_EMBED`` suffix.
    """
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw

    host_path = f"{parts.netloc}{parts.path}"
    if "calendly.com" in parts.netloc:
        url = add_query_param(raw, "embed_domain", host_domain or "localhost")
        return add_query_param(url, "embed_type", "Inline")
    if _EMBED_TRUE_RE.search(host_path):
        return add_query_param(raw, "embed", "true")
    if _LINK_ONLY_RE.search(host_path):
        return raw + NO_EMBED_MARKER
    return raw


def maps_url_for(address: str) -> str | None:
    if not address:
        return None
    return f"https://maps.google.com/?q={quote(address, safe='')}"


def frame_allowed(headers: httpx.Headers) -> bool:
    """Whether response headers permit framing by a third-party site."""
    xfo = (headers.get("x-frame-options") or "").strip().lower()
    if xfo and xfo != "allow":
        return False
    csp = (headers.get("content-security-policy") or "").lower()
    if "frame-ancestors" in csp:
        m = _FRAME_ANCESTORS_RE.search(csp)
        sources = m.group(1) if m else ""
        if "'none'" in sources or "*" not in sources:
            return False
    return True


# ── Embed probe ──────────────────────────────────────────────────────


class EmbedProbe:
    """Checks whether a booking page may be framed, with a TTL cache."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        cache: TTLCache | None = None,
        enabled: bool = EMBED_PROBE_ENABLED,
    ) -> None:
        self._client = client or httpx.Client(timeout=PROBE_TIMEOUT_SECONDS, follow_redirects=False)
        self._cache = cache or TTLCache(ttl_seconds=EMBED_PROBE_TTL_SECONDS)
        self._enabled = enabled

    def _try(self, method: str, url: str) -> bool:
        response = self._client.request(method, url)
        return frame_allowed(response.headers)

    def can_embed(self, url: str) -> bool:
        if url.endswith(NO_EMBED_MARKER):
            return False
        if not self._enabled:
            return True

        cached = self._cache.get(url)
        if cached is not None:
            return cached

        t0 = time.perf_counter()
        try:
            allowed = self._try("HEAD", url) or self._try("GET", url)
        except httpx.HTTPError as exc:
            metrics.record_failure(
                "booking_page", "embed_probe",
                error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
            )
            logger.warning("Embed probe for %s failed: %s", url, exc)
            allowed = False
        else:
            metrics.record_success("booking_page", "embed_probe", latency_ms=(time.perf_counter() - t0) * 1000)

        self._cache.put(url, allowed)
        logger.debug("Embed probe %s → %s", url, "iframe" if allowed else "link")
        return allowed


# ── Loader ───────────────────────────────────────────────────────────


def default_business_context(bot_id: str, is_after_hours: bool = False) -> BizContext:
    """Minimal context used when a profile is missing or fails to load."""
    return BizContext(
        bot_id=bot_id,
        hours_text=DEFAULT_HOURS_TEXT,
        is_open_now=not is_after_hours,
        services=DEFAULT_SERVICES,
    )


class JsonBusinessContextLoader:
    """``BusinessContextLoader`` over a JSON file of business profiles."""

    def __init__(self, path: Path | str = BUSINESS_PROFILES_PATH, probe: EmbedProbe | None = None) -> None:
        self._path = Path(path)
        self._probe = probe or EmbedProbe()
        self._profiles: dict[str, dict[str, Any]] | None = None
        self._lock = threading.Lock()

    def _all_profiles(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            if self._profiles is None:
                try:
                    self._profiles = json.loads(self._path.read_text(encoding="utf-8"))
                except FileNotFoundError:
                    logger.error("Business profiles file not found at %s", self._path)
                    self._profiles = {}
            return self._profiles

    def get_profile(self, bot_id: str) -> dict[str, Any]:
        profile = self._all_profiles().get(bot_id)
        if profile is None:
            raise BusinessNotFoundError(f"No business profile for bot {bot_id!r}")
        return profile

    def _booking(self, raw: str, host_domain: str) -> tuple[BookingProvider, str | None, str | None]:
        if not raw:
            return "none", None, None
        normalized = to_embed_url(raw, host_domain)
        if normalized.endswith(NO_EMBED_MARKER):
            return "link", normalized[: -len(NO_EMBED_MARKER)], None
        if self._probe.can_embed(normalized):
            return "iframe", raw, normalized
        return "link", raw, normalized

    def load(self, bot_id: str, is_after_hours: bool, host_domain: str) -> BizContext:
        try:
            profile = self.get_profile(bot_id)
        except BusinessNotFoundError:
            logger.warning("Unknown bot %s; using default business context", bot_id)
            return default_business_context(bot_id, is_after_hours)

        address = (profile.get("location") or "").strip()
        provider, booking_url, booking_iframe = self._booking(
            (profile.get("calendar_url") or "").strip(), host_domain,
        )
        return BizContext(
            bot_id=bot_id,
            business_name=profile.get("business_name") or "Dental Clinic",
            description=profile.get("description") or "",
            tone=profile.get("tone") or "",
            address=address,
            phone=profile.get("contact_phone") or "",
            email=profile.get("contact_email") or "",
            hours_text=profile.get("hours_text") or DEFAULT_HOURS_TEXT,
            is_open_now=not is_after_hours,
            offers=tuple(o for o in profile.get("offers", []) if o),
            services=tuple(profile.get("services") or DEFAULT_SERVICES),
            booking_provider=provider,
            booking_url=booking_url,
            booking_iframe=booking_iframe,
            maps_url=maps_url_for(address),
        )

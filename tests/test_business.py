"""Tests for business context loading and booking-page embedding."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest

from src.services.business import (
    BusinessNotFoundError,
    EmbedProbe,
    JsonBusinessContextLoader,
    frame_allowed,
    maps_url_for,
    to_embed_url,
)
from src.services.cache import TTLCache

PROFILES = {
    "calendly-clinic": {
        "business_name": "Bright Smile Dental",
        "location": "12 High Street, Dublin",
        "contact_phone": "+353 1 555 0142",
        "services": ["cleaning", "whitening"],
        "offers": ["New patient exam €95", ""],
        "calendar_url": "https://calendly.com/bright-smile/checkup",
    },
    "google-clinic": {
        "business_name": "Harbour Dental",
        "calendar_url": "https://calendar.google.com/calendar/appointments/schedules/abc",
    },
    "no-calendar": {"business_name": "Quiet Dental"},
}


def _response(headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.headers = httpx.Headers(headers or {})
    return response


def _probe(allowed: bool = True) -> MagicMock:
    probe = MagicMock()
    probe.can_embed.return_value = allowed
    return probe


@pytest.fixture
def profiles_path(tmp_path):
    path = tmp_path / "businesses.json"
    path.write_text(json.dumps(PROFILES), encoding="utf-8")
    return path


# ── URL helpers ──────────────────────────────────────────────────────


class TestEmbedUrls:
    def test_calendly_gets_embed_params(self):
        url = to_embed_url("https://calendly.com/clinic/checkup", "smile.example")
        assert "embed_domain=smile.example" in url
        assert "embed_type=Inline" in url

    def test_existing_params_are_kept(self):
        url = to_embed_url("https://calendly.com/clinic/checkup?embed_domain=other.example", "smile.example")
        assert "embed_domain=other.example" in url
        assert "smile.example" not in url

    def test_cal_com_gets_embed_true(self):
        assert to_embed_url("https://cal.com/clinic/30min", "x").endswith("embed=true")

    def test_google_bookings_are_link_only(self):
        url = to_embed_url("https://calendar.google.com/calendar/appointments/schedules/abc", "x")
        assert url.endswith("#NO_EMBED")

    def test_unknown_provider_unchanged(self):
        assert to_embed_url("https://clinic.example/book", "x") == "https://clinic.example/book"

    def test_maps_url(self):
        assert maps_url_for("12 High Street, Dublin") == "https://maps.google.com/?q=12%20High%20Street%2C%20Dublin"
        assert maps_url_for("") is None


class TestFrameAllowed:
    def test_no_headers(self):
        assert frame_allowed(httpx.Headers({}))

    @pytest.mark.parametrize("value", ["DENY", "SAMEORIGIN"])
    def test_x_frame_options_blocks(self, value):
        assert not frame_allowed(httpx.Headers({"X-Frame-Options": value}))

    def test_frame_ancestors_none_blocks(self):
        assert not frame_allowed(httpx.Headers({"Content-Security-Policy": "frame-ancestors 'none'"}))

    def test_frame_ancestors_wildcard_allows(self):
        assert frame_allowed(httpx.Headers({"Content-Security-Policy": "default-src 'self'; frame-ancestors *"}))


# ── Embed probe ──────────────────────────────────────────────────────


class TestEmbedProbe:
    def test_allowed_page(self):
        client = MagicMock()
        client.request.return_value = _response()
        assert EmbedProbe(client=client, cache=TTLCache()).can_embed("https://cal.com/x?embed=true")
        client.request.assert_called_once_with("HEAD", "https://cal.com/x?embed=true")

    def test_falls_back_to_get_when_head_refuses(self):
        client = MagicMock()
        client.request.side_effect = [_response({"X-Frame-Options": "DENY"}), _response()]
        assert EmbedProbe(client=client, cache=TTLCache()).can_embed("https://book.example")
        assert [c.args[0] for c in client.request.call_args_list] == ["HEAD", "GET"]

    def test_network_error_means_link(self):
        client = MagicMock()
        client.request.side_effect = httpx.ConnectError("down")
        assert not EmbedProbe(client=client, cache=TTLCache()).can_embed("https://book.example")

    def test_result_is_cached(self):
        client = MagicMock()
        client.request.return_value = _response({"X-Frame-Options": "DENY"})
        probe = EmbedProbe(client=client, cache=TTLCache())
        assert not probe.can_embed("https://book.example")
        assert not probe.can_embed("https://book.example")
        assert client.request.call_count == 2  # HEAD + GET once

    def test_no_embed_marker_skips_network(self):
        client = MagicMock()
        assert not EmbedProbe(client=client, cache=TTLCache()).can_embed("https://x.example#NO_EMBED")
        client.request.assert_not_called()

    def test_disabled_probe_trusts_the_url(self):
        client = MagicMock()
        assert EmbedProbe(client=client, cache=TTLCache(), enabled=False).can_embed("https://book.example")
        client.request.assert_not_called()


# ── Loader ───────────────────────────────────────────────────────────


class TestJsonBusinessContextLoader:
    def test_embeddable_calendar(self, profiles_path):
        loader = JsonBusinessContextLoader(profiles_path, probe=_probe(True))
        biz = loader.load("calendly-clinic", is_after_hours=False, host_domain="smile.example")
        assert biz.business_name == "Bright Smile Dental"
        assert biz.booking_provider == "iframe"
        assert biz.booking_url == "https://calendly.com/bright-smile/checkup"
        assert "embed_domain=smile.example" in biz.booking_iframe
        assert biz.is_open_now is True
        assert biz.offers == ("New patient exam €95",)
        assert biz.services == ("cleaning", "whitening")
        assert biz.maps_url.startswith("https://maps.google.com/?q=12%20High")

    def test_refused_frame_downgrades_to_link(self, profiles_path):
        loader = JsonBusinessContextLoader(profiles_path, probe=_probe(False))
        biz = loader.load("calendly-clinic", is_after_hours=True, host_domain="smile.example")
        assert biz.booking_provider == "link"
        assert biz.booking_url == "https://calendly.com/bright-smile/checkup"
        assert biz.is_open_now is False

    def test_link_only_provider(self, profiles_path):
        probe = _probe(True)
        loader = JsonBusinessContextLoader(profiles_path, probe=probe)
        biz = loader.load("google-clinic", is_after_hours=False, host_domain="x")
        assert biz.booking_provider == "link"
        assert biz.booking_url == "https://calendar.google.com/calendar/appointments/schedules/abc"
        probe.can_embed.assert_not_called()

    def test_no_calendar(self, profiles_path):
        biz = JsonBusinessContextLoader(profiles_path, probe=_probe()).load("no-calendar", False, "x")
        assert biz.booking_provider == "none"
        assert biz.booking_url is None
        assert biz.maps_url is None

    def test_unknown_bot_gets_default_context(self, profiles_path):
        biz = JsonBusinessContextLoader(profiles_path, probe=_probe()).load("nobody", True, "x")
        assert biz.bot_id == "nobody"
        assert biz.business_name == "Dental Clinic"
        assert biz.booking_provider == "none"
        assert biz.is_open_now is False
        assert biz.services

    def test_get_profile_raises_for_unknown_bot(self, profiles_path):
        with pytest.raises(BusinessNotFoundError):
            JsonBusinessContextLoader(profiles_path, probe=_probe()).get_profile("nobody")

    def test_missing_file_is_treated_as_empty(self, tmp_path):
        loader = JsonBusinessContextLoader(tmp_path / "missing.json", probe=_probe())
        assert loader.load("calendly-clinic", False, "x").business_name == "Dental Clinic"

"""Tests for WebhookChannel payload and delivery (aiohttp mocked)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from webguard.alerts.channels.webhook import WebhookChannel, build_payload
from webguard.detection.models import SecurityEvent, Severity

URL = "https://hooks.example.com/T000/B000"


def _make_event(severity=Severity.HIGH):
    return SecurityEvent(
        id="evt-9",
        type="command_injection",
        timestamp=0.0,
        source_ip="203.0.113.77",
        severity=severity,
        description="Command injection attempt detected",
    )


def _mock_session(status=200, post_side_effect=None):
    resp = MagicMock()
    resp.status = status
    resp.text = AsyncMock(return_value="error body")

    post_cm = MagicMock()
    post_cm.__aenter__.return_value = resp

    session = MagicMock()
    session.post.return_value = post_cm
    if post_side_effect is not None:
        session.post.side_effect = post_side_effect

    session_cm = MagicMock()
    session_cm.__aenter__.return_value = session
    return session_cm, session


class TestBuildPayload:
    def test_fields(self):
        payload = build_payload(_make_event())
        assert payload["text"] == "\U0001f6a8 Security Alert: command_injection"
        attachment = payload["attachments"][0]
        assert attachment["color"] == "warning"
        titles = [f["title"] for f in attachment["fields"]]
        assert titles == ["Type", "Severity", "IP Address", "Timestamp", "Description"]
        assert attachment["fields"][3]["value"] == "1970-01-01T00:00:00.000000Z"
        assert attachment["fields"][4]["short"] is False

    def test_critical_color(self):
        payload = build_payload(_make_event(Severity.CRITICAL))
        assert payload["attachments"][0]["color"] == "danger"


class TestWebhookChannel:
    def test_invalid_url_not_configured(self):
        assert WebhookChannel("ftp://example.com/hook").configured is False
        assert WebhookChannel(URL).configured is True

    @pytest.mark.asyncio
    async def test_send_success(self):
        session_cm, session = _mock_session(200)
        with patch("webguard.alerts.channels.webhook.aiohttp.ClientSession", return_value=session_cm):
            ok = await WebhookChannel(URL).send(_make_event())
        assert ok is True
        args, kwargs = session.post.call_args
        assert args[0] == URL
        assert kwargs["json"]["attachments"][0]["fields"][2]["value"] == "203.0.113.77"

    @pytest.mark.asyncio
    async def test_send_http_error_returns_false(self):
        session_cm, _ = _mock_session(500)
        with patch("webguard.alerts.channels.webhook.aiohttp.ClientSession", return_value=session_cm):
            assert await WebhookChannel(URL).send(_make_event()) is False

    @pytest.mark.asyncio
    async def test_send_network_error_swallowed(self):
        session_cm, _ = _mock_session(post_side_effect=aiohttp.ClientError("down"))
        with patch("webguard.alerts.channels.webhook.aiohttp.ClientSession", return_value=session_cm):
            assert await WebhookChannel(URL).send(_make_event()) is False

    @pytest.mark.asyncio
    async def test_unconfigured_send_returns_false(self):
        assert await WebhookChannel("").send(_make_event()) is False

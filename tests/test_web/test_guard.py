"""Tests for RequestGuardMiddleware and body decoding."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from webguard.utils.network import parse_networks
from webguard.web.guard import RequestGuardMiddleware, decode_body

ATTACKER = "203.0.113.7"


def _make_app(monitor, **kwargs):
    app = FastAPI()

    @app.get("/items")
    async def list_items():
        return {"items": []}

    @app.post("/items")
    async def create_item():
        return {"ok": True}

    @app.get("/files/{name}")
    async def get_file(name: str):
        return {"name": name}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.add_middleware(RequestGuardMiddleware, monitor=monitor, **kwargs)
    return app


def _client(app, client_ip=ATTACKER):
    transport = ASGITransport(app=app, client=(client_ip, 5555))
    return AsyncClient(transport=transport, base_url="http://test")


class TestGuard:
    @pytest.mark.asyncio
    async def test_clean_request_passes(self, monitor):
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/items?page=2")
        assert resp.status_code == 200
        assert len(monitor.events) == 0

    @pytest.mark.asyncio
    async def test_blocked_ip_rejected(self, monitor):
        monitor.block_ip(ATTACKER, "manual")
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/items")
        assert resp.status_code == 403
        assert resp.json() == {"error": "Access denied"}

    @pytest.mark.asyncio
    async def test_attack_recorded_and_blocked(self, monitor):
        """임계값을 넘는 공격 요청은 기록 후 같은 요청에서 거부된다."""
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/items", params={"id": "1 union select password from users"})
        assert resp.status_code == 403
        assert monitor.query(event_type="sql_injection").total == 1
        assert monitor.is_ip_blocked(ATTACKER)

    @pytest.mark.asyncio
    async def test_low_score_attack_passes(self, monitor):
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/items", params={"q": "<script>x</script>"})
        assert resp.status_code == 200
        assert monitor.get_suspicion_score(ATTACKER) == 5

    @pytest.mark.asyncio
    async def test_json_body_inspected(self, monitor):
        async with _client(_make_app(monitor)) as client:
            resp = await client.post("/items", json={"cmd": "x; cat /etc/shadow"})
        assert resp.status_code == 403
        assert monitor.query(event_type="command_injection").total == 1

    @pytest.mark.asyncio
    async def test_exempt_path_skipped(self, monitor):
        monitor.block_ip(ATTACKER, "manual")
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/health")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_forwarded_ip_from_trusted_proxy(self, monitor):
        monitor.block_ip("198.51.100.77", "manual")
        app = _make_app(monitor, trusted_proxies=parse_networks(["10.0.0.0/8"]))
        async with _client(app, client_ip="10.1.1.1") as client:
            resp = await client.get("/items", headers={"X-Forwarded-For": "198.51.100.77, 10.1.1.1"})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_inspection_failure_fails_open(self, monitor):
        def _boom(snapshot):
            raise RuntimeError("inspector down")

        monitor.inspect_request = _boom
        async with _client(_make_app(monitor)) as client:
            resp = await client.get("/items")
        assert resp.status_code == 200


class TestDecodeBody:
    def test_empty(self):
        assert decode_body(b"", "application/json", 100) is None

    def test_json(self):
        assert decode_body(b'{"a": 1}', "application/json; charset=utf-8", 100) == {"a": 1}

    def test_truncated_json_kept_as_text(self):
        assert decode_body(b'{"a": "long value"}', "application/json", 8) == '{"a": "l'

    def test_form(self):
        body = decode_body(b"user=bob&pw=", "application/x-www-form-urlencoded", 100)
        assert body == {"user": "bob", "pw": ""}

    def test_plain_text(self):
        assert decode_body(b"hello", "text/plain", 100) == "hello"


@pytest.mark.asyncio
async def test_path_parameter_payload_inspected_via_path(monitor):
    """라우팅 전이라 경로 파라미터는 비어 있지만 경로 자체가 검사된다."""
    async with _client(_make_app(monitor)) as client:
        resp = await client.get("/files/<script>x")
    assert resp.status_code == 200
    assert monitor.query(event_type="xss_attempt").total == 1

"""End-to-end tests of the bridge HTTP surface with fake upstream and webhook."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.audit.logger import AuditLogger, read_audit_events
from src.models import AuditEventType
from tests.conftest import (
    WEBHOOK_URL,
    RecordingTransport,
    failing_transport,
    json_transport,
    make_settings,
    sse_body,
)

SCENARIO_BODY = {
    "action": "send_email",
    "params": {"to": "a@b.com"},
    "webhook_url": WEBHOOK_URL,
    "request_id": "r1",
}


def _make_app(
    upstream: httpx.AsyncBaseTransport | None = None,
    webhook: httpx.AsyncBaseTransport | None = None,
    **settings: Any,
) -> FastAPI:
    return create_app(
        make_settings(**settings),
        upstream_transport=upstream or json_transport({"ok": True}),
        webhook_transport=webhook or json_transport({}),
    )


async def _post(app: FastAPI, path: str = "/execute", **kwargs: Any) -> httpx.Response:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.post(path, **kwargs)
    await app.state.notifier.drain()
    return resp


class TestSynchronousMode:
    @pytest.mark.asyncio
    async def test_success_scenario(self) -> None:
        upstream = json_transport({"ok": True})
        webhook = json_transport({})
        app = _make_app(upstream, webhook)

        resp = await _post(app, json=SCENARIO_BODY)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "request_id": "r1",
            "message": "Processed successfully.",
        }
        assert upstream.bodies() == [{"action": "send_email", "params": {"to": "a@b.com"}}]
        assert webhook.bodies() == [{"success": True, "request_id": "r1", "result": {"ok": True}}]

    @pytest.mark.asyncio
    async def test_root_path_is_an_alias(self) -> None:
        resp = await _post(_make_app(), "/", json=SCENARIO_BODY)
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_params_default_to_empty(self) -> None:
        upstream = json_transport({"ok": True})
        body = {k: v for k, v in SCENARIO_BODY.items() if k != "params"}

        await _post(_make_app(upstream), json=body)

        assert upstream.bodies() == [{"action": "send_email", "params": {}}]

    @pytest.mark.asyncio
    async def test_generated_request_id_threads_through(self) -> None:
        webhook = json_transport({})
        body = {k: v for k, v in SCENARIO_BODY.items() if k != "request_id"}

        resp = await _post(_make_app(webhook=webhook), json=body)

        request_id = resp.json()["request_id"]
        assert request_id
        assert webhook.bodies()[0]["request_id"] == request_id

    @pytest.mark.asyncio
    async def test_upstream_failure_returns_500_and_notifies_webhook(self) -> None:
        upstream = json_transport({"error": "invalid action"}, status_code=400)
        webhook = json_transport({})

        resp = await _post(_make_app(upstream, webhook), json=SCENARIO_BODY)

        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["request_id"] == "r1"
        assert body["error"] == "Failed during upstream request."
        assert "400" in body["message"]
        assert body["details"] == {"error": "invalid action"}
        assert webhook.bodies() == [body]

    @pytest.mark.asyncio
    async def test_timeout_scenario(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        webhook = json_transport({})
        app = _make_app(RecordingTransport(slow), webhook, upstream_timeout=0.05)

        resp = await _post(app, json=SCENARIO_BODY)

        assert resp.status_code == 500
        assert "timed out" in resp.json()["message"]
        sent = webhook.bodies()
        assert len(sent) == 1
        assert sent[0]["success"] is False
        assert sent[0]["request_id"] == "r1"

    @pytest.mark.asyncio
    async def test_webhook_failure_does_not_change_response(self) -> None:
        webhook = failing_transport(httpx.ConnectError("webhook down"))

        resp = await _post(_make_app(webhook=webhook), json=SCENARIO_BODY)

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert len(webhook.requests) == 1

    @pytest.mark.asyncio
    async def test_stream_mode_end_to_end(self) -> None:
        upstream = RecordingTransport(lambda request: httpx.Response(
            200,
            content=sse_body({"jsonrpc": "2.0", "id": 1, "result": {"content": "sent"}}),
            headers={"content-type": "text/event-stream"},
        ))
        webhook = json_transport({})

        resp = await _post(_make_app(upstream, webhook, upstream_mode="stream"), json=SCENARIO_BODY)

        assert resp.status_code == 200
        assert webhook.bodies()[0]["result"] == {"content": "sent"}


class TestRejections:
    @pytest.mark.asyncio
    async def test_empty_body_scenario(self) -> None:
        upstream = json_transport()
        webhook = json_transport({})

        resp = await _post(_make_app(upstream, webhook), json={})

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": "Bad Request: Request body is empty."}
        assert upstream.requests == []
        assert webhook.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["action", "webhook_url"])
    async def test_missing_field_never_reaches_upstream(self, missing: str) -> None:
        upstream = json_transport()
        webhook = json_transport({})
        body = {k: v for k, v in SCENARIO_BODY.items() if k != missing}

        resp = await _post(_make_app(upstream, webhook), json=body)

        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert missing in resp.json()["error"]
        assert upstream.requests == []
        assert webhook.requests == []

    @pytest.mark.asyncio
    async def test_malformed_json_is_400(self) -> None:
        resp = await _post(
            _make_app(),
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [SCENARIO_BODY, {}])
    async def test_missing_configuration_is_500_regardless_of_body(
        self, body: dict[str, Any],
    ) -> None:
        webhook = json_transport({})
        app = _make_app(webhook=webhook, upstream_url=None)

        resp = await _post(app, json=body)

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "error": "Server configuration error."}
        assert webhook.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/execute", "/"])
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH", "TRACE", "PROPFIND"])
    async def test_other_methods_are_405(self, method: str, path: str) -> None:
        app = _make_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.request(method, path)
        assert resp.status_code == 405
        assert resp.json() == {"success": False, "error": "Method Not Allowed"}


class TestAcceptMode:
    @pytest.mark.asyncio
    async def test_returns_202_then_notifies_webhook(self) -> None:
        webhook = json_transport({})
        app = _make_app(webhook=webhook, response_mode="accept")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/execute", json=SCENARIO_BODY)
            assert resp.status_code == 202
            assert resp.json() == {
                "status": "accepted",
                "request_id": "r1",
                "message": "Request accepted for processing.",
            }
            await app.state.pipeline.drain()
            status = await client.get("/status/r1")

        assert webhook.bodies() == [{"success": True, "request_id": "r1", "result": {"ok": True}}]
        assert status.json()["status"] == "completed"


class TestAuxiliaryRoutes:
    @pytest.mark.asyncio
    async def test_health(self) -> None:
        app = _make_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health_without_configuration(self) -> None:
        app = _make_app(upstream_url=None)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/health")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_status_after_sync_request(self) -> None:
        app = _make_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            await client.post("/execute", json=SCENARIO_BODY)
            resp = await client.get("/status/r1")
        assert resp.status_code == 200
        snapshot = resp.json()
        assert snapshot["request_id"] == "r1"
        assert snapshot["action"] == "send_email"
        assert snapshot["status"] == "completed"

    @pytest.mark.asyncio
    async def test_status_unknown_is_404(self) -> None:
        app = _make_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.get("/status/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Request not found"}

    @pytest.mark.asyncio
    async def test_options_preflight(self) -> None:
        app = _make_app()
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.options("/execute")
        assert resp.status_code == 200
        assert resp.content == b""
        assert resp.headers["access-control-allow-origin"] == "*"

    @pytest.mark.asyncio
    async def test_cors_header_on_execute_response(self) -> None:
        resp = await _post(_make_app(), json=SCENARIO_BODY)
        assert resp.headers["access-control-allow-origin"] == "*"


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_lifecycle_events_written(self, tmp_path: Path) -> None:
        log_path = tmp_path / "audit.jsonl"
        app = create_app(
            make_settings(),
            audit_logger=AuditLogger(str(log_path)),
            upstream_transport=json_transport({"ok": True}),
            webhook_transport=json_transport({}),
        )

        await _post(app, json=SCENARIO_BODY)
        await _post(app, json={})

        types = [e.event_type for e in read_audit_events(log_path)]
        assert types == [
            AuditEventType.REQUEST_ACCEPTED,
            AuditEventType.UPSTREAM_SUCCESS,
            AuditEventType.WEBHOOK_DELIVERED,
            AuditEventType.REQUEST_REJECTED,
        ]
        first = json.loads(log_path.read_text().splitlines()[0])
        assert first["request_id"] == "r1"

    @pytest.mark.asyncio
    async def test_audit_write_failure_keeps_caller_and_webhook_answers(self) -> None:
        audit = MagicMock(spec=AuditLogger)
        audit.log.side_effect = OSError("disk full")
        webhook = json_transport({})
        app = create_app(
            make_settings(),
            audit_logger=audit,
            upstream_transport=json_transport({"ok": True}),
            webhook_transport=webhook,
        )

        resp = await _post(app, json=SCENARIO_BODY)

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert webhook.bodies() == [
            {"success": True, "request_id": "r1", "result": {"ok": True}},
        ]
        assert audit.log.call_count == 3

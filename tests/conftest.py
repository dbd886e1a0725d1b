"""Shared test fixtures for the action webhook bridge."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from src.config import BridgeSettings
from src.models import ActionRequest, AuditEvent, AuditEventType

UPSTREAM_URL = "https://upstream.example/mcp"
WEBHOOK_URL = "https://cb.example/x"


@pytest.fixture
def audit_log_path(tmp_path: Path) -> str:
    return str(tmp_path / "audit" / "bridge.jsonl")


# --- Factory functions for test data ---


def make_action_request(**kwargs: Any) -> ActionRequest:
    """Factory for ActionRequest with sensible defaults."""
    defaults: dict[str, Any] = {
        "action": "send_email",
        "params": {"to": "a@b.com"},
        "webhook_url": WEBHOOK_URL,
        "request_id": "r1",
    }
    defaults.update(kwargs)
    return ActionRequest(**defaults)


def make_settings(**kwargs: Any) -> BridgeSettings:
    """Factory for BridgeSettings pointing at a fake upstream, with no backoff."""
    defaults: dict[str, Any] = {
        "upstream_url": UPSTREAM_URL,
        "stream_backoff": 0.0,
    }
    defaults.update(kwargs)
    return BridgeSettings(**defaults)


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.REQUEST_ACCEPTED,
        "action": "execute",
        "result": "success",
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def sse_body(*messages: dict[str, Any]) -> bytes:
    """Encode messages as a server-sent event stream."""
    return "".join(
        f"event: message\ndata: {json.dumps(m)}\n\n" for m in messages
    ).encode()


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], Any]) -> None:
        self.requests: list[httpx.Request] = []

        def _record(request: httpx.Request) -> Any:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)

    def bodies(self) -> list[Any]:
        return [json.loads(r.content) for r in self.requests]


def json_transport(
    payload: Any = None, status_code: int = 200,
) -> RecordingTransport:
    """Transport that answers every request with the same JSON body."""
    body = {"ok": True} if payload is None else payload
    return RecordingTransport(
        lambda request: httpx.Response(status_code, json=body),
    )


def failing_transport(exc: Exception) -> RecordingTransport:
    def _raise(request: httpx.Request) -> httpx.Response:
        raise exc

    return RecordingTransport(_raise)

"""Upstream invoker: one bounded call to the automation endpoint.

Two modes:

- ``request``: a single POST bounded by a total timeout. The upstream may
  answer with JSON or with a server-sent event stream; both are accepted.
- ``stream``: a long-lived event stream read until a terminal message,
  retried on timeout or connection loss with linear backoff up to a fixed
  attempt ceiling.

Each call returns one result or raises one ``InvocationError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx

from src.bridge.errors import (
    ConfigurationError,
    UpstreamError,
    UpstreamExhausted,
    UpstreamTimeoutError,
)

if TYPE_CHECKING:
    from src.config import BridgeSettings
    from src.models import ActionRequest

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "application/json, text/event-stream"


class StreamState(str, Enum):
    CONNECTING = "connecting"
    AWAITING_MESSAGE = "awaiting_message"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SseDecoder:
    """Incremental server-sent event decoder.

    Feed it one line at a time (without the trailing newline). A blank line
    completes an event; ``feed`` then returns its ``data`` payload, decoded
    as JSON when possible. Comment lines and fields other than ``data`` are
    ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> Any | None:
        line = line.rstrip("\r")
        if line == "":
            return self.flush()
        if line.startswith(":"):
            return None
        if line.startswith("data:"):
            self._data.append(line[len("data:"):].strip())
        return None

    def flush(self) -> Any | None:
        if not self._data:
            return None
        raw = "\n".join(self._data)
        self._data = []
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw


def _terminal_result(message: Any, status_code: int) -> tuple[bool, Any]:
    """Return (True, result) for a result message; raise on an error message."""
    if not isinstance(message, dict):
        return False, None
    if "error" in message and message["error"] is not None:
        raise UpstreamError(
            "Upstream reported an error", status_code=status_code, body=message["error"],
        )
    if "result" in message:
        return True, message["result"]
    return False, None


def _response_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return resp.text


def _is_event_stream(resp: httpx.Response) -> bool:
    return resp.headers.get("content-type", "").startswith("text/event-stream")


class UpstreamInvoker:
    """Calls the automation endpoint and normalizes its answer."""

    def __init__(
        self,
        upstream_url: str,
        token: str | None = None,
        *,
        mode: str = "request",
        timeout: float = 25.0,
        stream_timeout: float = 30.0,
        max_attempts: int = 3,
        backoff: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not upstream_url:
            raise ConfigurationError("Upstream URL is not configured")
        self._upstream_url = upstream_url
        self._token = token
        self._mode = mode
        self._timeout = timeout
        self._stream_timeout = stream_timeout
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: BridgeSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> UpstreamInvoker:
        if not settings.upstream_url:
            raise ConfigurationError("Upstream URL is not configured")
        return cls(
            settings.upstream_url,
            settings.upstream_token,
            mode=settings.upstream_mode,
            timeout=settings.upstream_timeout,
            stream_timeout=settings.stream_timeout,
            max_attempts=settings.stream_max_attempts,
            backoff=settings.stream_backoff,
            transport=transport,
        )

    @property
    def mode(self) -> str:
        return self._mode

    async def invoke(self, request: ActionRequest) -> Any:
        """Send the action upstream and return its result."""
        payload = request.to_upstream_payload().to_wire()
        logger.info(
            "Invoking upstream for request %s (action=%r, mode=%s)",
            request.request_id, request.action, self._mode,
        )
        async with httpx.AsyncClient(transport=self._transport) as client:
            if self._mode == "stream":
                return await self._invoke_streaming(client, payload)
            return await self._invoke_once(client, payload)

    def backoff_delay(self, attempt: int) -> float:
        """Linear backoff: attempt * backoff unit."""
        return attempt * self._backoff

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": ACCEPT_HEADER,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    # --- request mode ---

    async def _invoke_once(
        self, client: httpx.AsyncClient, payload: dict[str, Any],
    ) -> Any:
        try:
            async with asyncio.timeout(self._timeout):
                resp = await client.post(
                    self._upstream_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamTimeoutError(self._timeout) from exc
        except httpx.TransportError as exc:
            raise UpstreamError(f"Upstream unavailable: {exc}") from exc

        if not resp.is_success:
            raise UpstreamError(
                f"Upstream error {resp.status_code}",
                status_code=resp.status_code,
                body=_response_body(resp),
            )

        if _is_event_stream(resp):
            return self._result_from_event_body(resp)

        if not resp.content:
            return None
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UpstreamError(
                "Upstream returned a body that is not JSON",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

    def _result_from_event_body(self, resp: httpx.Response) -> Any:
        decoder = SseDecoder()
        for line in [*resp.text.splitlines(), ""]:
            message = decoder.feed(line)
            if message is None:
                continue
            done, result = _terminal_result(message, resp.status_code)
            if done:
                return result
        raise UpstreamError(
            "Upstream event stream ended without a result",
            status_code=resp.status_code,
            body=resp.text,
        )

    # --- stream mode ---

    async def _invoke_streaming(
        self, client: httpx.AsyncClient, payload: dict[str, Any],
    ) -> Any:
        attempt = 0
        state = StreamState.CONNECTING
        outcome: Any = None
        while state is not StreamState.SUCCEEDED:
            if state is StreamState.RETRYING:
                if attempt >= self._max_attempts:
                    logger.error("Upstream stream exhausted after %d attempts", attempt)
                    raise UpstreamExhausted(attempt, outcome)
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Upstream stream attempt %d failed (%s); retrying in %.1fs",
                    attempt, outcome, delay,
                )
                await asyncio.sleep(delay)
            attempt += 1
            state, outcome = await self._stream_attempt(client, payload, attempt)
        return outcome

    async def _stream_attempt(
        self, client: httpx.AsyncClient, payload: dict[str, Any], attempt: int,
    ) -> tuple[StreamState, Any]:
        """Run one connect-and-listen attempt under a single timeout.

        Returns ``(SUCCEEDED, result)`` or ``(RETRYING, error)``. Terminal
        failures raise ``UpstreamError``.
        """
        state = StreamState.CONNECTING
        logger.debug("Upstream stream attempt %d: %s", attempt, state.value)
        try:
            async with asyncio.timeout(self._stream_timeout):
                async with client.stream(
                    "POST",
                    self._upstream_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self._stream_timeout,
                ) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        raise UpstreamError(
                            f"Upstream error {resp.status_code}",
                            status_code=resp.status_code,
                            body=_response_body(resp),
                        )
                    state = StreamState.AWAITING_MESSAGE
                    logger.debug("Upstream stream attempt %d: %s", attempt, state.value)
                    decoder = SseDecoder()
                    async for line in resp.aiter_lines():
                        message = decoder.feed(line)
                        if message is None:
                            continue
                        done, result = _terminal_result(message, resp.status_code)
                        if done:
                            return StreamState.SUCCEEDED, result
                    done, result = _terminal_result(decoder.flush(), resp.status_code)
                    if done:
                        return StreamState.SUCCEEDED, result
        except UpstreamError:
            logger.debug("Upstream stream attempt %d: %s", attempt, StreamState.FAILED.value)
            raise
        except (TimeoutError, httpx.TimeoutException):
            return StreamState.RETRYING, UpstreamTimeoutError(self._stream_timeout)
        except httpx.TransportError as exc:
            return StreamState.RETRYING, UpstreamError(f"Upstream unavailable: {exc}")
        return StreamState.RETRYING, UpstreamError("Upstream stream closed without a result")

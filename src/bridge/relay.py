"""Action relay pipeline.

Runs one validated request through the bridge:

1. Track the request as pending
2. Invoke the upstream (awaited, bounded by the invoker's timeout)
3. Build exactly one outcome envelope
4. Record the terminal status
5. Dispatch the envelope to the webhook (detached, best-effort)
6. Audit log
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from src.bridge.errors import InvocationError
from src.models import (
    AuditEvent,
    AuditEventType,
    FailureEnvelope,
    OutcomeEnvelope,
    RequestStatus,
    SuccessEnvelope,
)

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.bridge.invoker import UpstreamInvoker
    from src.bridge.notifier import WebhookNotifier
    from src.bridge.tracker import RequestTracker
    from src.models import ActionRequest

logger = logging.getLogger(__name__)

UPSTREAM_FAILURE_MESSAGE = "Failed during upstream request."


class ActionRelayPipeline:
    """Composes the invoker, notifier and tracker for one request at a time."""

    def __init__(
        self,
        invoker: UpstreamInvoker,
        notifier: WebhookNotifier,
        tracker: RequestTracker | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._invoker = invoker
        self._notifier = notifier
        self._tracker = tracker
        self._audit = audit_logger
        self._background: set[asyncio.Task[OutcomeEnvelope]] = set()

    def accept(self, request: ActionRequest) -> asyncio.Task[OutcomeEnvelope]:
        """Register the request and process it in the background."""
        self._register(request)
        task = asyncio.create_task(
            self.process(request), name=f"relay-{request.request_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def process(self, request: ActionRequest) -> OutcomeEnvelope:
        """Invoke the upstream and notify the webhook. Returns the envelope."""
        self._register(request)

        envelope: OutcomeEnvelope
        try:
            result = await self._invoker.invoke(request)
        except InvocationError as exc:
            logger.error("Upstream failure for request %s: %s", request.request_id, exc)
            envelope = FailureEnvelope(
                request_id=request.request_id,
                error=UPSTREAM_FAILURE_MESSAGE,
                message=str(exc),
                details=exc.details,
            )
        except Exception as exc:
            logger.exception("Unexpected error for request %s", request.request_id)
            envelope = FailureEnvelope(
                request_id=request.request_id,
                error=UPSTREAM_FAILURE_MESSAGE,
                message=str(exc) or type(exc).__name__,
            )
        else:
            envelope = SuccessEnvelope(request_id=request.request_id, result=result)

        status = RequestStatus.COMPLETED if envelope.success else RequestStatus.FAILED
        if self._tracker is not None:
            self._tracker.mark(request.request_id, status)

        self._notifier.dispatch(request.webhook_url, envelope)
        self._log_outcome(request, envelope)
        return envelope

    async def drain(self) -> None:
        """Wait for background processing and webhook deliveries."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._notifier.drain()

    def _register(self, request: ActionRequest) -> None:
        if self._tracker is None:
            return
        entry = self._tracker.get(request.request_id)
        if entry is None or entry.is_terminal:
            self._tracker.register(request)

    def _log_outcome(self, request: ActionRequest, envelope: OutcomeEnvelope) -> None:
        if self._audit is None:
            return
        details: dict[str, object] = {"upstream_mode": self._invoker.mode}
        if isinstance(envelope, FailureEnvelope) and envelope.message:
            details["message"] = envelope.message
        event = AuditEvent(
            event_type=(
                AuditEventType.UPSTREAM_SUCCESS
                if envelope.success
                else AuditEventType.UPSTREAM_FAILURE
            ),
            request_id=request.request_id,
            action=request.action,
            result="success" if envelope.success else "failure",
            details=details,
        )
        try:
            self._audit.log(event)
        except OSError:
            logger.exception("Failed to write audit event for request %s", request.request_id)

"""Best-effort webhook notifier.

Each envelope is POSTed once to the caller's webhook. Failures are logged
and never reach the caller-facing response.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import httpx

from src.bridge.errors import WebhookDeliveryError
from src.models import AuditEvent, AuditEventType

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger
    from src.models import OutcomeEnvelope

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Delivers outcome envelopes to caller-supplied webhooks."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._audit = audit_logger
        self._pending: set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, url: str, envelope: OutcomeEnvelope) -> asyncio.Task[bool]:
        """Schedule delivery without waiting for it."""
        task = asyncio.create_task(
            self.deliver(url, envelope),
            name=f"webhook-{envelope.request_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def deliver(self, url: str, envelope: OutcomeEnvelope) -> bool:
        """POST the envelope once. Returns True on a 2xx answer."""
        try:
            await self._send(url, envelope)
        except WebhookDeliveryError as exc:
            logger.warning("%s (request %s)", exc, envelope.request_id)
            self._log_audit(envelope, AuditEventType.WEBHOOK_FAILED, "failure", str(exc))
            return False
        logger.info("Delivered outcome for request %s to webhook", envelope.request_id)
        self._log_audit(envelope, AuditEventType.WEBHOOK_DELIVERED, "success")
        return True

    async def drain(self) -> None:
        """Wait for all in-flight deliveries to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _send(self, url: str, envelope: OutcomeEnvelope) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=envelope.to_wire(),
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
        except httpx.TimeoutException as exc:
            raise WebhookDeliveryError(url, f"timed out after {self._timeout:g}s") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise WebhookDeliveryError(url, str(exc) or type(exc).__name__) from exc

        if not resp.is_success:
            raise WebhookDeliveryError(
                url, f"HTTP {resp.status_code}", status_code=resp.status_code,
            )

    def _log_audit(
        self,
        envelope: OutcomeEnvelope,
        event_type: AuditEventType,
        result: str,
        reason: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        details: dict[str, object] = {"success": envelope.success}
        if reason:
            details["reason"] = reason
        event = AuditEvent(
            event_type=event_type,
            request_id=envelope.request_id,
            action="webhook_delivery",
            result=result,
            details=details,
        )
        try:
            self._audit.log(event)
        except OSError:
            logger.exception("Failed to write audit event for request %s", envelope.request_id)

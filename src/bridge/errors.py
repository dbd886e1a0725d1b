"""Error taxonomy for the bridge request lifecycle."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for errors surfaced to the caller with an HTTP status."""

    status_code = 500


# --- Validation (400) ---


class RequestValidationError(BridgeError):
    status_code = 400


class MalformedBody(RequestValidationError):
    def __init__(self, reason: str = "Invalid JSON in request body.") -> None:
        self.reason = reason
        super().__init__(f"Bad Request: {reason}")


class EmptyBody(RequestValidationError):
    def __init__(self) -> None:
        super().__init__("Bad Request: Request body is empty.")


class MissingField(RequestValidationError):
    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        names = ", ".join(f"'{f}'" for f in fields)
        noun = "field" if len(fields) == 1 else "fields"
        super().__init__(f"Bad Request: Missing required {noun} {names}.")


# --- Configuration (500) ---


class ConfigurationError(BridgeError):
    """Raised when the bridge is not configured to reach an upstream."""


# --- Invocation (500, forwarded to the webhook) ---


class InvocationError(BridgeError):
    details: Any = None


class UpstreamError(InvocationError):
    """Upstream answered with a failure or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        self.upstream_status = status_code
        self.details = body
        super().__init__(message)


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Upstream request timed out after {timeout:g}s")


class UpstreamExhausted(InvocationError):
    """Streaming retry ceiling reached without a terminal message."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        reason = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Upstream gave no result after {attempts} attempts{reason}")


# --- Notification ---


class WebhookDeliveryError(Exception):
    """Webhook POST failed. Logged by the notifier, never propagated."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Webhook delivery to {url} failed: {reason}")

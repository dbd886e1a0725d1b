"""Action bridge core.

This package provides the request lifecycle components:
- Request validation
- Upstream invocation
- Webhook notification
- Request tracking
- The relay pipeline composing them
"""

from src.bridge.errors import (
    BridgeError,
    ConfigurationError,
    EmptyBody,
    InvocationError,
    MalformedBody,
    MissingField,
    RequestValidationError,
    UpstreamError,
    UpstreamExhausted,
    UpstreamTimeoutError,
    WebhookDeliveryError,
)
from src.bridge.invoker import SseDecoder, StreamState, UpstreamInvoker
from src.bridge.notifier import WebhookNotifier
from src.bridge.relay import ActionRelayPipeline
from src.bridge.tracker import RequestTracker
from src.bridge.validator import parse_action_request

__all__ = [
    # Exceptions
    "BridgeError",
    "ConfigurationError",
    "EmptyBody",
    "InvocationError",
    "MalformedBody",
    "MissingField",
    "RequestValidationError",
    "UpstreamError",
    "UpstreamExhausted",
    "UpstreamTimeoutError",
    "WebhookDeliveryError",
    # Components
    "ActionRelayPipeline",
    "RequestTracker",
    "SseDecoder",
    "StreamState",
    "UpstreamInvoker",
    "WebhookNotifier",
    "parse_action_request",
]

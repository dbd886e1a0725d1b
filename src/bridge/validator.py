"""Inbound request validation.

Turns a raw request body into an ``ActionRequest`` or raises one of
``MalformedBody``, ``EmptyBody`` or ``MissingField``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from src.bridge.errors import EmptyBody, MalformedBody, MissingField
from src.models import ActionRequest

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("action", "webhook_url")


def parse_action_request(body: bytes | str | dict[str, Any] | None) -> ActionRequest:
    """Parse and validate an inbound body."""
    data = _decode(body)

    if not data:
        logger.warning("Rejected request: body is empty")
        raise EmptyBody()

    missing = [name for name in _REQUIRED_FIELDS if _is_blank(data.get(name))]
    if missing:
        logger.warning("Rejected request: missing %s", ", ".join(missing))
        raise MissingField(missing)

    if data.get("request_id") in (None, ""):
        data = {k: v for k, v in data.items() if k != "request_id"}

    try:
        request = ActionRequest.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "body"
        logger.warning("Rejected request: %s: %s", location, first["msg"])
        raise MalformedBody(f"Invalid '{location}': {first['msg']}.") from exc

    logger.info(
        "Validated request %s for action %r", request.request_id, request.action,
    )
    return request


def _decode(body: bytes | str | dict[str, Any] | None) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, dict):
        return body
    if isinstance(body, bytes):
        try:
            body = body.decode()
        except UnicodeDecodeError as exc:
            raise MalformedBody("Request body is not valid UTF-8.") from exc
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.warning("Rejected request: invalid JSON (%s)", exc)
        raise MalformedBody() from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedBody("Request body must be a JSON object.")
    return data


def _is_blank(value: object) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()

"""Shared Pydantic data models for the action webhook bridge."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Enums ---


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditEventType(str, Enum):
    REQUEST_ACCEPTED = "request_accepted"
    REQUEST_REJECTED = "request_rejected"
    UPSTREAM_SUCCESS = "upstream_success"
    UPSTREAM_FAILURE = "upstream_failure"
    WEBHOOK_DELIVERED = "webhook_delivered"
    WEBHOOK_FAILED = "webhook_failed"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _new_request_id() -> str:
    return str(uuid.uuid4())


# --- Request Models ---


class ActionRequest(BaseModel):
    """Validated inbound action request."""

    model_config = ConfigDict(frozen=True)

    action: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)
    webhook_url: str
    request_id: str = Field(default_factory=_new_request_id, min_length=1)
    instructions: str | None = None

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value: object) -> object:
        return {} if value is None else value

    @field_validator("webhook_url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("webhook_url must be an absolute http(s) URL")
        return value

    def to_upstream_payload(self) -> UpstreamPayload:
        return UpstreamPayload(
            action=self.action,
            params=self.params,
            instructions=self.instructions,
        )


class UpstreamPayload(BaseModel):
    """Body sent to the automation endpoint. Never carries webhook_url or request_id."""

    model_config = ConfigDict(frozen=True)

    action: str
    params: dict[str, Any]
    instructions: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# --- Outcome Envelopes ---


class SuccessEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    request_id: str
    result: Any = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump()


class FailureEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    request_id: str
    error: str
    message: str | None = None
    details: Any = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


OutcomeEnvelope = SuccessEnvelope | FailureEnvelope


# --- Tracking Models ---


class PendingRequest(BaseModel):
    request_id: str
    action: str
    params: dict[str, Any]
    webhook_url: str
    status: RequestStatus = RequestStatus.PENDING
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def is_terminal(self) -> bool:
        return self.status != RequestStatus.PENDING


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    request_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "rejected"
    details: dict[str, object] | None = None

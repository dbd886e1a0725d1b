"""FastAPI application exposing the action bridge."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.api.cors_middleware import CorsMiddleware
from src.audit.logger import AuditLogger
from src.bridge.errors import RequestValidationError
from src.bridge.invoker import UpstreamInvoker
from src.bridge.notifier import WebhookNotifier
from src.bridge.relay import ActionRelayPipeline
from src.bridge.tracker import RequestTracker
from src.bridge.validator import parse_action_request
from src.config import BridgeSettings
from src.models import AuditEvent, AuditEventType

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Any other method on these paths gets the bridge's own 405 body.
# OPTIONS never reaches the routes; CorsMiddleware answers it.
_EXECUTE_PATHS = frozenset({"/", "/execute"})


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = BridgeSettings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    return create_app(settings)


def create_app(
    settings: BridgeSettings,
    audit_logger: AuditLogger | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
    webhook_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create the bridge app.

    The transports are only for tests; by default both outbound clients use
    the network.
    """
    if audit_logger is None:
        audit_logger = AuditLogger.from_settings(settings)
    tracker = RequestTracker(retention_seconds=settings.tracker_retention)
    notifier = WebhookNotifier(
        timeout=settings.webhook_timeout,
        transport=webhook_transport,
        audit_logger=audit_logger,
    )
    pipeline: ActionRelayPipeline | None = None
    if settings.is_configured:
        invoker = UpstreamInvoker.from_settings(settings, transport=upstream_transport)
        pipeline = ActionRelayPipeline(invoker, notifier, tracker, audit_logger)
    else:
        logger.error("UPSTREAM_URL is not set; every action request will fail with 500")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if pipeline is not None:
            await pipeline.drain()
        else:
            await notifier.drain()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.settings = settings
    app.state.tracker = tracker
    app.state.notifier = notifier
    app.state.pipeline = pipeline

    def audit(event_type: AuditEventType, result: str, **details: object) -> None:
        if audit_logger is None:
            return
        event = AuditEvent(
            event_type=event_type,
            request_id=details.pop("request_id", None),  # type: ignore[arg-type]
            action="execute",
            result=result,
            details=details or None,
        )
        try:
            audit_logger.log(event)
        except OSError:
            logger.exception("Failed to write audit event %s", event_type.value)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 405 and request.url.path in _EXECUTE_PATHS:
            return JSONResponse(
                {"success": False, "error": "Method Not Allowed"}, status_code=405,
            )
        return await http_exception_handler(request, exc)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy", "message": "Action bridge is running"}

    @app.get("/status/{request_id}")
    async def status(request_id: str) -> JSONResponse:
        entry = tracker.get(request_id)
        if entry is None:
            return JSONResponse({"error": "Request not found"}, status_code=404)
        return JSONResponse(entry.model_dump(mode="json"))

    @app.post("/execute")
    @app.post("/")
    async def execute(request: Request) -> JSONResponse:
        if pipeline is None:
            logger.error("Rejecting request: upstream URL is not configured")
            audit(AuditEventType.REQUEST_REJECTED, "failure", reason="configuration")
            return JSONResponse(
                {"success": False, "error": "Server configuration error."},
                status_code=500,
            )

        body = await request.body()
        try:
            action_request = parse_action_request(body)
        except RequestValidationError as exc:
            audit(AuditEventType.REQUEST_REJECTED, "rejected", reason=str(exc))
            return JSONResponse(
                {"success": False, "error": str(exc)}, status_code=exc.status_code,
            )

        audit(
            AuditEventType.REQUEST_ACCEPTED,
            "success",
            request_id=action_request.request_id,
            action=action_request.action,
        )

        if settings.response_mode == "accept":
            pipeline.accept(action_request)
            return JSONResponse(
                {
                    "status": "accepted",
                    "request_id": action_request.request_id,
                    "message": "Request accepted for processing.",
                },
                status_code=202,
            )

        envelope = await pipeline.process(action_request)
        if envelope.success:
            return JSONResponse({
                "success": True,
                "request_id": envelope.request_id,
                "message": "Processed successfully.",
            })
        return JSONResponse(envelope.to_wire(), status_code=500)

    app.add_middleware(CorsMiddleware, allow_origin=settings.cors_allow_origin)

    return app

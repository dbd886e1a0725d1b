"""Click CLI for running the bridge and sending one-off actions."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
import uvicorn

from src.api.app import LOG_FORMAT
from src.audit.logger import AuditLogger
from src.bridge.errors import BridgeError
from src.bridge.invoker import UpstreamInvoker
from src.bridge.notifier import WebhookNotifier
from src.bridge.relay import ActionRelayPipeline
from src.bridge.validator import parse_action_request
from src.config import BridgeSettings
from src.models import ActionRequest, OutcomeEnvelope


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """Action webhook bridge CLI."""
    ctx.ensure_object(dict)
    try:
        settings = BridgeSettings.from_env()
    except BridgeError as exc:
        raise click.ClickException(str(exc)) from exc
    logging.basicConfig(level=(log_level or settings.log_level).upper(), format=LOG_FORMAT)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--host", default="0.0.0.0", help="Bind address.")
@click.option("--port", default=8080, type=int, help="Bind port.")
def serve(host: str, port: int) -> None:
    """Serve the HTTP bridge with uvicorn."""
    uvicorn.run("src.api.app:create_app_from_env", factory=True, host=host, port=port)


@cli.command()
@click.argument("action")
@click.option("--webhook-url", required=True, help="Webhook receiving the outcome.")
@click.option("--params", default="{}", help="Action parameters as a JSON object.")
@click.option("--request-id", default=None, help="Correlation id (generated if omitted).")
@click.option("--instructions", default=None, help="Natural-language hint for the upstream.")
@click.pass_context
def execute(
    ctx: click.Context,
    action: str,
    webhook_url: str,
    params: str,
    request_id: str | None,
    instructions: str | None,
) -> None:
    """Run one action through the bridge and print the outcome envelope."""
    settings: BridgeSettings = ctx.obj["settings"]
    try:
        parsed_params = json.loads(params)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint="--params") from exc

    body: dict[str, object] = {
        "action": action,
        "params": parsed_params,
        "webhook_url": webhook_url,
    }
    if request_id:
        body["request_id"] = request_id
    if instructions:
        body["instructions"] = instructions

    try:
        request = parse_action_request(body)
        invoker = UpstreamInvoker.from_settings(settings)
    except BridgeError as exc:
        raise click.ClickException(str(exc)) from exc

    audit_logger = AuditLogger.from_settings(settings)
    notifier = WebhookNotifier(timeout=settings.webhook_timeout, audit_logger=audit_logger)
    pipeline = ActionRelayPipeline(invoker, notifier, audit_logger=audit_logger)

    envelope = asyncio.run(_run(pipeline, request))
    click.echo(json.dumps(envelope.to_wire(), indent=2))
    if not envelope.success:
        sys.exit(1)


async def _run(pipeline: ActionRelayPipeline, request: ActionRequest) -> OutcomeEnvelope:
    envelope = await pipeline.process(request)
    await pipeline.drain()
    return envelope

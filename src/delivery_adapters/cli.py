# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for delivery-adapters.

Usage:
    delivery-adapters list
    delivery-adapters schema resend
    delivery-adapters --config adapters.ini validate transactional
    delivery-adapters --config adapters.ini health
    delivery-adapters --config adapters.ini send transactional --to user@example.com \\
        --subject "Hello" --body "<p>Hi</p>"

The configuration path defaults to ``$DLA_CONFIG`` or ``adapters.ini``; the
log level is read from ``$DLA_LOG_LEVEL`` (default ``WARNING``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .adapters import ADAPTERS, DeliveryAdapter, adapter_class
from .config_loader import CONFIG_ENV_VAR, build_adapters, default_config_path
from .errors import DeliveryError
from .models import HealthStatus, Message

console = Console()
err_console = Console(stderr=True)

HEALTH_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
}


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def configure_logging() -> None:
    level = os.environ.get("DLA_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_adapters(config_path: str) -> dict[str, DeliveryAdapter]:
    """Build the configured adapters or exit with an error message."""
    try:
        return build_adapters(config_path)
    except (FileNotFoundError, ValueError, DeliveryError) as exc:
        print_error(str(exc))
        sys.exit(1)


def pick_adapter(config_path: str, adapter_id: str) -> DeliveryAdapter:
    adapters = load_adapters(config_path)
    if adapter_id not in adapters:
        print_error(f"Adapter '{adapter_id}' not found in {config_path}")
        sys.exit(1)
    return adapters[adapter_id]


@click.group()
@click.version_option(__version__)
@click.option(
    "--config",
    "config_path",
    envvar=CONFIG_ENV_VAR,
    default=None,
    help="Adapter configuration file (default: $DLA_CONFIG or adapters.ini).",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None) -> None:
    """Dispatch messages through provider adapters."""
    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path or default_config_path()


@main.command("list")
def list_providers() -> None:
    """List the available providers."""
    table = Table(title="Delivery Adapters")
    table.add_column("Provider", style="cyan")
    table.add_column("Name")
    table.add_column("Group")
    table.add_column("Description", style="dim")
    for key, cls in sorted(ADAPTERS.items()):
        meta = cls.get_metadata()
        table.add_row(key, meta.name, meta.group, meta.description)
    console.print(table)


@main.command()
@click.argument("provider")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def schema(provider: str, as_json: bool) -> None:
    """Show the configuration schema of PROVIDER."""
    try:
        cls = adapter_class(provider)
    except ValueError as exc:
        print_error(str(exc))
        sys.exit(1)
    fields = cls.get_config_schema()
    if as_json:
        console.print_json(json.dumps([f.model_dump() for f in fields], default=str))
        return

    table = Table(title=f"{cls.get_metadata().name} configuration")
    table.add_column("Field", style="cyan")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("Required")
    table.add_column("Group")
    table.add_column("Default", style="dim")
    for f in fields:
        table.add_row(
            f.name,
            f.label,
            f.type,
            "yes" if f.required else "",
            f.group,
            "" if f.default is None else str(f.default),
        )
    console.print(table)


@main.command()
@click.argument("adapter_id")
@click.pass_context
def validate(ctx: click.Context, adapter_id: str) -> None:
    """Check the credentials of ADAPTER_ID against the provider."""
    adapter = pick_adapter(ctx.obj["config_path"], adapter_id)
    result = run_async(adapter.validate_config())
    if result.success:
        print_success(result.message)
    else:
        print_error(result.message)
        sys.exit(1)


@main.command()
@click.argument("adapter_id", required=False)
@click.pass_context
def health(ctx: click.Context, adapter_id: str | None) -> None:
    """Probe one configured adapter, or all of them."""
    adapters = load_adapters(ctx.obj["config_path"])
    if adapter_id is not None:
        if adapter_id not in adapters:
            print_error(f"Adapter '{adapter_id}' not found")
            sys.exit(1)
        adapters = {adapter_id: adapters[adapter_id]}

    async def _probe() -> list[tuple[str, str, HealthStatus]]:
        ids = list(adapters)
        statuses = await asyncio.gather(*(adapters[i].health_check() for i in ids))
        return [(i, adapters[i].key, s) for i, s in zip(ids, statuses)]

    table = Table(title="Adapter health")
    table.add_column("Adapter", style="cyan")
    table.add_column("Provider")
    table.add_column("Status")
    healthy = True
    for aid, provider, status in run_async(_probe()):
        healthy = healthy and status is not HealthStatus.UNHEALTHY
        style = HEALTH_STYLES[status]
        table.add_row(aid, provider, f"[{style}]{status.value}[/{style}]")
    console.print(table)
    if not healthy:
        sys.exit(1)


@main.command()
@click.argument("adapter_id")
@click.option("--to", "to", required=True, help="Recipient.")
@click.option("--subject", default=None, help="Subject line.")
@click.option("--body", default=None, help="Message body (HTML or text).")
@click.option("--data", "data_json", default=None, help="Adapter options as a JSON object.")
@click.option("--idempotency-key", default=None, help="Caller deduplication key.")
@click.pass_context
def send(
    ctx: click.Context,
    adapter_id: str,
    to: str,
    subject: str | None,
    body: str | None,
    data_json: str | None,
    idempotency_key: str | None,
) -> None:
    """Send one message through ADAPTER_ID."""
    data: dict[str, Any] = {}
    if data_json:
        try:
            data = json.loads(data_json)
        except json.JSONDecodeError as e:
            print_error(f"Invalid JSON for --data: {e}")
            sys.exit(1)
        if not isinstance(data, dict):
            print_error("--data must be a JSON object")
            sys.exit(1)

    adapter = pick_adapter(ctx.obj["config_path"], adapter_id)
    message = Message(to=to, subject=subject, body=body, data=data, idempotency_key=idempotency_key)
    result = run_async(adapter.send_mail(message))
    if result.success:
        print_success(f"Sent, provider id: {result.id}")
        return
    kind = "local" if result.is_local_error else ("temporary" if result.is_temporary else "permanent")
    print_error(f"{result.error} ({kind})")
    if result.pause_duration:
        err_console.print(f"  Pause for {result.pause_duration}s before retrying")
    sys.exit(1)


if __name__ == "__main__":
    main()

"""
CLI ops commands — health and metrics of a running server.

Usage:
    python -m mirroring_service health [--json]
    python -m mirroring_service metrics [--format prometheus|json]
"""

from __future__ import annotations

import json

import click

from ..client import MirroringClient
from ..errors import MirroringError


@click.command("health")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    """Check the running server's health."""
    with MirroringClient.from_settings(ctx.obj["settings"], no_retry=True) as client:
        try:
            result = client.health()
        except MirroringError as e:
            if as_json:
                click.echo(json.dumps({"status": "down", "error": e.message}, indent=2))
            else:
                click.secho(f"❌ Mirroring server: DOWN ({e.message})", fg="red", bold=True)
            raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    ok = result.get("status") == "ok"
    click.echo()
    click.secho(
        f"{'✅' if ok else '⚠️'} Mirroring server: {result.get('status', 'unknown').upper()}",
        fg="green" if ok else "yellow",
        bold=True,
    )
    click.echo(f"   Uptime:           {result.get('uptime_seconds', 0):.0f}s")
    click.echo(f"   Targets:          {result.get('mirroring', 0)}")
    click.echo(f"   Active downloads: {result.get('active_downloads', 0)}")
    click.echo(f"   Network:          {result.get('network', 'unknown')}")
    click.echo()


@click.command("metrics")
@click.option("--format", "output_format", type=click.Choice(["prometheus", "json"]), default="prometheus")
@click.pass_context
def metrics_cmd(ctx: click.Context, output_format: str) -> None:
    """Export the running server's metrics."""
    with MirroringClient.from_settings(ctx.obj["settings"], no_retry=True) as client:
        try:
            text = client.metrics()
        except MirroringError as e:
            raise click.ClickException(e.message) from e

    if output_format == "json":
        samples = []
        for line in text.splitlines():
            if not line or line.startswith("#"):
                continue
            name, _, value = line.rpartition(" ")
            samples.append({"sample": name, "value": float(value)})
        click.echo(json.dumps(samples, indent=2))
    else:
        click.echo(text, nl=False)

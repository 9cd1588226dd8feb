"""
CLI control commands — talk to a running mirroring server.

Usage:
    python -m mirroring_service mirror KEY [--type unichain|bitdrive]
    python -m mirroring_service unmirror KEY [--type unichain|bitdrive]
    python -m mirroring_service status KEY [--type unichain|bitdrive]
    python -m mirroring_service list [--json]
    python -m mirroring_service stop
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict

import click

from ..client import MirroringClient
from ..errors import MirroringError
from ..models import MirrorType

_TYPE_CHOICE = click.Choice([t.value for t in MirrorType])


def _client(ctx: click.Context) -> MirroringClient:
    return MirroringClient.from_settings(ctx.obj["settings"], no_retry=True)


def _call(ctx: click.Context, fn: Callable[[MirroringClient], Dict[str, Any]]) -> Dict[str, Any]:
    """Run one client call, turning failures into a clean CLI error."""
    with _client(ctx) as client:
        try:
            return fn(client)
        except MirroringError as e:
            raise click.ClickException(e.message) from e


def _echo_status(result: Dict[str, Any]) -> None:
    icon, color = ("✅", "green") if result["mirroring"] else ("⏹ ", "yellow")
    click.secho(f"{icon} {result['key']} ({result['type']})", fg=color, nl=False)
    click.echo(f" — {'mirroring' if result['mirroring'] else 'not mirroring'}")


@click.command("mirror")
@click.argument("key")
@click.option("--type", "mirror_type", type=_TYPE_CHOICE, default=None, help="Target type")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def mirror(ctx: click.Context, key: str, mirror_type: str, as_json: bool) -> None:
    """Start mirroring a chain or drive."""
    result = _call(ctx, lambda c: c.mirror(key, mirror_type))
    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        _echo_status(result)


@click.command("unmirror")
@click.argument("key")
@click.option("--type", "mirror_type", type=_TYPE_CHOICE, default=None, help="Target type")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def unmirror(ctx: click.Context, key: str, mirror_type: str, as_json: bool) -> None:
    """Stop mirroring a chain or drive."""
    result = _call(ctx, lambda c: c.unmirror(key, mirror_type))
    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        _echo_status(result)


@click.command("status")
@click.argument("key")
@click.option("--type", "mirror_type", type=_TYPE_CHOICE, default=None, help="Target type")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, key: str, mirror_type: str, as_json: bool) -> None:
    """Show whether a target is being mirrored."""
    result = _call(ctx, lambda c: c.status(key, mirror_type))
    if as_json:
        click.echo(json.dumps(result, indent=2))
    else:
        _echo_status(result)


@click.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List everything currently mirrored."""
    result = _call(ctx, lambda c: c.list())

    if as_json:
        click.echo(json.dumps(result, indent=2))
        return

    entries = result.get("mirroring", [])
    if not entries:
        click.echo("Nothing is being mirrored.")
        return

    click.echo(f"\n🔀 Mirroring {len(entries)} target(s)\n")
    for entry in entries:
        _echo_status(entry)
    click.echo()


@click.command("stop")
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running mirroring server."""
    _call(ctx, lambda c: c.stop())
    click.secho("✓ Mirroring server is shutting down", fg="green")

"""
Mirroring Service — CLI Entry Point

Usage:
    python -m mirroring_service serve [--storage DIR]
    python -m mirroring_service mirror KEY [--type bitdrive]
    python -m mirroring_service unmirror KEY [--type bitdrive]
    python -m mirroring_service status KEY
    python -m mirroring_service list [--json]
    python -m mirroring_service stop
"""

from __future__ import annotations

# Load .env before anything reads MIRRORING_* variables
from pathlib import Path
from dotenv import load_dotenv

_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

import logging
import signal
from typing import Optional

import click

from .cli.control import list_cmd, mirror, status, stop, unmirror
from .cli.ops import health, metrics_cmd
from .config import ServiceSettings
from .errors import MirroringError
from .logging_config import setup_logging
from .service import MirroringService

logger = logging.getLogger(__name__)


@click.group()
@click.option("--host", default=None, help="Control endpoint host")
@click.option("--port", type=int, default=None, help="Control endpoint port")
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="YAML config file")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
@click.pass_context
def cli(
    ctx: click.Context,
    host: Optional[str],
    port: Optional[int],
    config_file: Optional[Path],
    log_level: Optional[str],
) -> None:
    """Mirroring Service — keep chains and drives replicated and downloaded."""
    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = ServiceSettings.load(config_file, host=host, port=port)


@cli.command()
@click.option("--storage", "storage_dir", type=click.Path(file_okay=False, path_type=Path),
              default=None, help="Directory for the mirror registry")
@click.option("--namespace", default=None, help="Chain store namespace")
@click.pass_context
def serve(ctx: click.Context, storage_dir: Optional[Path], namespace: Optional[str]) -> None:
    """Run the mirroring daemon in the foreground."""
    settings: ServiceSettings = ctx.obj["settings"].with_overrides(
        **{k: v for k, v in {"storage_dir": storage_dir, "namespace": namespace}.items() if v is not None}
    )
    service = MirroringService(settings)

    def _shutdown_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        service.close_async(delay=0)

    signal.signal(signal.SIGINT, _shutdown_signal)
    signal.signal(signal.SIGTERM, _shutdown_signal)

    try:
        service.open()
    except MirroringError as e:
        click.secho(f"✗ {e.message}", fg="red", err=True)
        raise SystemExit(1)

    click.secho(f"✓ Mirroring service running at {service.endpoint}", fg="green")
    click.echo(f"  Registry: {settings.registry_path}")

    # Wake periodically so signals are handled promptly
    while not service.wait(timeout=0.5):
        pass
    click.echo("Mirroring service stopped.")


cli.add_command(mirror)
cli.add_command(unmirror)
cli.add_command(status)
cli.add_command(list_cmd)
cli.add_command(stop)
cli.add_command(health)
cli.add_command(metrics_cmd)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

"""
Post Media Pipeline — CLI Entry Point

Usage:
    python -m postmedia.main ingest FILE [--mime TYPE] [--json]
    python -m postmedia.main probe FILE
    python -m postmedia.main policy [--json]
    python -m postmedia.main serve [--host H] [--port P] [--debug]
"""

from __future__ import annotations

import click

from .cli.ingest import ingest, probe
from .cli.ops import policy_cmd, serve
from .config.loader import load_config
from .logging_config import setup_logging


@click.group()
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR (default: $LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """Post Media Pipeline — normalize uploaded images and videos."""
    setup_logging(level=log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config()


cli.add_command(ingest)
cli.add_command(probe)
cli.add_command(policy_cmd)
cli.add_command(serve)


if __name__ == "__main__":
    cli()

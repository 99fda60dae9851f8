"""
CLI ops commands — effective policy, HTTP server.

Usage:
    python -m postmedia.main policy [--json]
    python -m postmedia.main serve [--host 0.0.0.0] [--port 5060] [--debug]
"""

from __future__ import annotations

import json

import click


@click.command("policy")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def policy_cmd(ctx: click.Context, as_json: bool) -> None:
    """Show the effective media policy."""
    config = ctx.obj["config"]
    policy = config.policy

    if as_json:
        click.echo(json.dumps(policy.model_dump(), indent=2))
        return

    click.secho("📋 Media policy", bold=True)
    click.echo(f"   Max size:        {policy.max_bytes:,} bytes")
    click.echo(f"   Max duration:    {policy.video.max_duration_seconds:g}s")
    click.echo(f"   Image types:     {', '.join(policy.image_mime_types)}")
    click.echo(f"   Video types:     {', '.join(policy.video_mime_types)}")
    click.echo(f"   Quality steps:   {policy.image.quality_steps()}")
    click.echo(f"   Scale steps:     {policy.image.scale_steps()}")
    click.echo("   Video levels:")
    for index, level in enumerate(policy.video.levels):
        click.echo(f"     {index}: crf={level.crf} preset={level.preset} width≤{level.width}")
    click.echo(f"   Thumbnail edge:  {policy.thumbnail.max_edge}px")
    click.echo()
    click.echo(f"   Upload root:     {config.upload_root}")
    click.echo(f"   Workers:         {config.workers}")


@click.command("serve")
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=5060, type=int, help="Port")
@click.option("--debug", is_flag=True, help="Enable Flask debug mode")
@click.pass_context
def serve(ctx: click.Context, host: str, port: int, debug: bool) -> None:
    """Run the media HTTP API."""
    from ..web.server import run_server

    run_server(host=host, port=port, debug=debug, config=ctx.obj["config"])

"""
CLI media commands — run one ingestion or inspect a video.

Usage:
    python -m postmedia.main ingest photo.png
    python -m postmedia.main ingest clip.bin --mime video/mp4 --json
    python -m postmedia.main probe clip.mp4
"""

from __future__ import annotations

import json
import mimetypes
from pathlib import Path
from typing import Optional

import click


@click.command("ingest")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mime", "mime_type", default=None, help="Declared MIME type (default: guessed from the name)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ingest(ctx: click.Context, file: Path, mime_type: Optional[str], as_json: bool) -> None:
    """Normalize FILE into the configured upload root."""
    from ..media.models import RawUpload
    from ..media.orchestrator import IngestionOrchestrator

    config = ctx.obj["config"]
    mime_type = mime_type or mimetypes.guess_type(file.name)[0] or "application/octet-stream"

    orchestrator = IngestionOrchestrator(config)
    outcome = orchestrator.ingest(RawUpload.from_path(file, mime_type))

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
        if not outcome.ok:
            raise SystemExit(1)
        return

    if not outcome.ok:
        error = outcome.error
        click.secho(f"❌ {error.code}: {error.user_message}", fg="red", err=True)
        if error.detail:
            click.echo(f"   {error.detail}", err=True)
        raise SystemExit(1)

    asset = outcome.asset
    click.secho(f"✓ {asset.media_type.value} stored", fg="green")
    click.echo(f"  Path:       {asset.storage_path}")
    click.echo(f"  Size:       {asset.byte_size:,} bytes")
    click.echo(f"  Thumbnail:  {asset.thumbnail_path}")
    if asset.duration_seconds is not None:
        click.echo(f"  Duration:   {asset.duration_seconds:.2f}s")


@click.command("probe")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def probe(ctx: click.Context, file: Path) -> None:
    """Show duration, dimensions and codecs of a video FILE."""
    from ..media.ffmpeg import EncoderError, FFmpeg

    config = ctx.obj["config"]
    ffmpeg = FFmpeg(config.ffmpeg_bin, config.ffprobe_bin, timeout=config.encode_timeout)

    try:
        info = ffmpeg.probe(file)
    except EncoderError as e:
        click.secho(f"❌ Probe failed: {e}", fg="red", err=True)
        raise SystemExit(1)

    duration = f"{info.duration:.2f}s" if info.duration is not None else "unknown"
    size = f"{info.width}x{info.height}" if info.width and info.height else "unknown"
    click.echo(f"File:      {file.name}")
    click.echo(f"Duration:  {duration}")
    click.echo(f"Size:      {size}")
    click.echo(f"Codec:     {info.video_codec or 'none'}")
    click.echo(f"Audio:     {'yes' if info.has_audio else 'no'}")

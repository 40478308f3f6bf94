"""
Main CLI application using Typer.

One command, two roles:

    moqrelay --moqrs-dir ~/moq-rs                                  # server
    moqrelay --client --playlist iptv/index.m3u --output-dir out   # client

A missing flag for the selected role prints its usage line and exits
without an error status.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from moqrelay.catalog.playlist import update_catalog
from moqrelay.infra.exceptions import LaunchError, MoqRelayError, PlaylistError
from moqrelay.infra.logging import configure_logging, get_logger
from moqrelay.infra.settings import settings
from moqrelay.runtime.client import SubscribeClient
from moqrelay.runtime.server import PublishServer

app = typer.Typer(help="moqrelay - random live-TV channel relay over Media over QUIC", add_completion=False)

logger = get_logger(__name__)

CLIENT_PLAYLIST_USAGE = "Usage for client: moqrelay --client --playlist <path to playlist>"
CLIENT_OUTPUT_USAGE = "Usage for client: moqrelay --client --output-dir <path to output directory>"
SERVER_USAGE = "Usage for server: moqrelay --moqrs-dir <path to moq-rs directory>"


@app.command()
def main(
    client: bool = typer.Option(False, "--client", help="Run as client"),
    playlist: str = typer.Option("", "--playlist", help="Path to the M3U playlist; its directory holds the channel catalog"),
    output_dir: str = typer.Option("", "--output-dir", help="Directory receiving the recorded <publisher>.mp4 files"),
    update: bool = typer.Option(False, "--update", help="Refresh the channel catalog from the playlist first"),
    moqrs_dir: str = typer.Option("", "--moqrs-dir", help="Path to the moq-rs checkout (server)"),
):
    """Run the moqrelay server (default) or a client (--client)."""
    if client:
        if not playlist:
            typer.echo(CLIENT_PLAYLIST_USAGE)
            return
        if not output_dir:
            typer.echo(CLIENT_OUTPUT_USAGE)
            return
        configure_logging()
        _run_client(Path(playlist), Path(output_dir), update)
    else:
        if not moqrs_dir:
            typer.echo(SERVER_USAGE)
            return
        configure_logging()
        _run_server(Path(moqrs_dir))


def _run_client(playlist: Path, output_dir: Path, update: bool) -> None:
    if update:
        try:
            update_catalog(playlist)
        except PlaylistError as e:
            logger.error("catalog_update_failed", playlist=str(playlist), error=str(e))
            raise typer.Exit(1)

    runner = SubscribeClient(playlist.parent, output_dir, config=settings)
    try:
        asyncio.run(runner.run())
    except MoqRelayError as e:
        logger.error("client_failed", error=str(e), error_type=type(e).__name__)
        raise typer.Exit(1)


def _run_server(moqrs_dir: Path) -> None:
    try:
        server = PublishServer(moqrs_dir, config=settings)
        asyncio.run(server.run())
    except LaunchError as e:
        logger.error("relay_launch_failed", error=str(e))
        raise typer.Exit(1)
    except MoqRelayError as e:
        logger.error("server_failed", error=str(e), error_type=type(e).__name__)
        raise typer.Exit(1)


def cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()

"""CLI entry point for the relay."""

from pathlib import Path

import click

from keyrelay import __version__
from keyrelay.config import load_config
from keyrelay.identity import KEY_LENGTH, is_valid_key
from keyrelay.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """keyrelay - WebRTC signaling relay for keyed devices."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Address to bind (overrides config).")
@click.option("--port", type=int, default=None, help="Port to listen on (overrides config).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Run the relay until interrupted."""
    import asyncio

    from keyrelay.daemon import RelayDaemon, StartupError

    config = ctx.obj["config"]

    async def _serve():
        daemon = RelayDaemon(config=config)

        try:
            await daemon.start(host=host, port=port)
            click.echo(f"Relay listening on port {daemon.server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await daemon.run_forever()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        pass


@main.command("check-key")
@click.argument("key")
def check_key(key: str) -> None:
    """Check that KEY is a well-formed device key."""
    if is_valid_key(key):
        click.echo(f"{key}: valid")
        return
    click.echo(
        f"{key}: invalid (expected {KEY_LENGTH} uppercase letters or digits)",
        err=True,
    )
    raise SystemExit(1)


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"keyrelay version {__version__}")

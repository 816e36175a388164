"""
envelope-relay CLI: `envelope-relay` command.

Commands:
  envelope-relay [serve]          Run the relay (default)
  envelope-relay tail [types...]  Print incoming events to the terminal
  envelope-relay run [command...] Run a dev command with the relay alongside
  envelope-relay mcp              MCP over stdio, relay running alongside
  envelope-relay help [command]   Show usage
"""

import asyncio
import logging

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install envelope-relay[cli]")

from envelope_relay import __version__
from envelope_relay.config import DEFAULT_PORT, RelaySettings, load_settings
from envelope_relay.errors import RelayError
from envelope_relay.formatters.registry import AVAILABLE_FORMATTERS

console = Console()
err_console = Console(stderr=True)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=debug)],
        force=True,
    )
    if not debug:
        for noisy in ("httpx", "httpcore", "uvicorn.access", "mcp"):
            logging.getLogger(noisy).setLevel(logging.WARNING)


def _settings() -> RelaySettings:
    return click.get_current_context().find_root().obj["settings"]


def _run(coro):
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return None


@click.group(invoke_without_command=True)
@click.version_option(__version__)
@click.option("-p", "--port", type=int, default=None, help=f"Port to listen on (default: {DEFAULT_PORT}).")
@click.option("-d", "--debug", is_flag=True, default=False, help="Enable debug logging.")
@click.option("-f", "--format", "format_", type=click.Choice(AVAILABLE_FORMATTERS), default=None,
              help="Output format for tail (default: human).")
@click.pass_context
def main(ctx: click.Context, port, debug, format_):
    """Local relay for error, log and trace envelopes."""
    try:
        settings = load_settings({"port": port, "debug": debug or None, "default_format": format_})
    except RelayError as e:
        err_console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    _configure_logging(settings.debug)
    ctx.obj = {"settings": settings}
    if ctx.invoked_subcommand is None:
        ctx.invoke(serve_cmd)


@click.command("serve")
def serve_cmd():
    """Run the relay server."""
    from envelope_relay.server import run_server

    settings = _settings()
    console.print(f"[green]envelope-relay[/green] listening on [bold]{settings.base_url}[/bold]")
    run_server(settings)


@click.command("help")
@click.argument("command", required=False)
@click.pass_context
def help_cmd(ctx: click.Context, command):
    """Show usage, for the whole CLI or one command."""
    root = ctx.find_root()
    target = main.get_command(root, command) if command else None
    if command and target is None:
        err_console.print(f"[red]Unknown command: {command}[/red]")
        raise SystemExit(1)
    if target is None:
        click.echo(root.get_help())
    else:
        with click.Context(target, info_name=command, parent=root) as sub:
            click.echo(target.get_help(sub))
    ctx.exit(0)


# Register subcommands from separate modules
from envelope_relay.cli.run import run_cmd
from envelope_relay.cli.stdio import mcp_cmd
from envelope_relay.cli.tail import tail_cmd

main.add_command(serve_cmd)
main.add_command(tail_cmd)
main.add_command(mcp_cmd)
main.add_command(run_cmd)
main.add_command(help_cmd)


if __name__ == "__main__":
    main()

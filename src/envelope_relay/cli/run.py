"""CLI: envelope-relay run"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import click

from envelope_relay.config import RelaySettings
from envelope_relay.errors import RelayError
from envelope_relay.service import RelayService

logger = logging.getLogger("envelope_relay.cli.run")

# package.json scripts tried, in order, when no command is given
DEV_SCRIPTS = ("dev", "develop", "serve", "start")


def _settings():
    from envelope_relay.cli.main import _settings
    return _settings()


def _run(coro):
    from envelope_relay.cli.main import _run
    return _run(coro)


def infer_command(cwd: Path) -> Optional[str]:
    """Dev command from the project's package.json scripts, if there is one."""
    try:
        scripts = json.loads((cwd / "package.json").read_text()).get("scripts")
    except (OSError, ValueError, AttributeError):
        return None
    if not isinstance(scripts, dict):
        return None
    for name in DEV_SCRIPTS:
        if isinstance(scripts.get(name), str):
            return scripts[name]
    return None


def resolve_command(args: Sequence[str], cwd: Path) -> tuple[list[str], bool]:
    """(argv, run through the shell). Raises RelayError when nothing can be run."""
    if args:
        return list(args), False
    script = infer_command(cwd)
    if script:
        return [script], True
    raise RelayError("no_command", "No command specified to run and could not infer the command automatically.")


def child_env(
    settings: RelaySettings,
    cwd: Path,
    shell: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    env = dict(os.environ if environ is None else environ)
    env["SENTRY_SPOTLIGHT"] = f"{settings.base_url}/stream"
    env["SENTRY_TRACES_SAMPLE_RATE"] = "1"
    if shell:
        env["PATH"] = str(cwd / "node_modules" / ".bin") + os.pathsep + env.get("PATH", "")
    return env


async def spawn(
    args: Sequence[str],
    env: Mapping[str, str],
    cwd: Path,
    shell: bool = False,
    **kwargs: Any,
) -> asyncio.subprocess.Process:
    if shell:
        return await asyncio.create_subprocess_shell(" ".join(args), env=dict(env), cwd=cwd, **kwargs)
    return await asyncio.create_subprocess_exec(*args, env=dict(env), cwd=cwd, **kwargs)


async def run_command(settings: RelaySettings, args: Sequence[str], cwd: Optional[Path] = None) -> int:
    """Serve the relay while the dev command runs. Returns the command's exit code."""
    from envelope_relay.server import serve

    cwd = cwd or Path.cwd()
    argv, shell = resolve_command(args, cwd)
    command = " ".join(argv)

    service = RelayService(
        buffer_size=settings.buffer_size,
        idle_ttl=settings.session_idle_ttl,
        queue_size=settings.subscriber_queue_size,
    )
    server = asyncio.create_task(serve(settings, service))
    try:
        logger.info("Starting command: %s", command)
        try:
            process = await spawn(argv, child_env(settings, cwd, shell), cwd, shell)
        except OSError as e:
            raise RelayError("command_failed", f"Failed to run {command}: {e}") from e
        try:
            code = await process.wait()
        except asyncio.CancelledError:
            process.terminate()
            await process.wait()
            raise
        if code:
            logger.error("%s exited with code %d.", command, code)
        else:
            logger.error("%s exited, terminating.", command)
        return code
    finally:
        server.cancel()


@click.command("run", context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def run_cmd(command):
    """Run the relay and your dev command, with SENTRY_SPOTLIGHT pointing at the relay.

    Without a command, the dev/develop/serve/start script of ./package.json is used.
    """
    from envelope_relay.cli.main import err_console

    try:
        code = _run(run_command(_settings(), command))
    except RelayError as e:
        err_console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)
    raise SystemExit(code or 0)

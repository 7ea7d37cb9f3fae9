"""Command runner used for every ``openclaw`` CLI invocation.

The driver functions take the runner as an argument so tests and the route
layer can substitute their own. The default implementation never raises:
missing executables, timeouts and non-zero exits all come back as
``CommandResult(ok=False, ...)``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from openclaw_panel.logging import get_logger
from openclaw_panel.updater.models import CommandResult

log = get_logger("openclaw_panel.updater.commands")

# (command, args, timeout_seconds) -> CommandResult
RunCmd = Callable[[str, Sequence[str], float], Awaitable[CommandResult]]

MAX_OUTPUT_CHARS = 10 * 1024 * 1024


async def run_command(command: str, args: Sequence[str], timeout: float = 30.0) -> CommandResult:
    """Run ``command`` with ``args`` and capture trimmed stdout/stderr."""
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        log.warning("command_not_found", command=command)
        return CommandResult(ok=False, code=None, message=f"{command}: not found ({exc})")
    except OSError as exc:
        log.warning("command_spawn_failed", command=command, error=str(exc))
        return CommandResult(ok=False, code=None, message=str(exc))

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("command_timeout", command=command, args=list(args), timeout=timeout)
        return CommandResult(
            ok=False,
            code=None,
            message=f"{command} {' '.join(args)} timed out after {timeout:g}s",
        )

    out = stdout.decode(errors="replace")[:MAX_OUTPUT_CHARS].strip()
    err = stderr.decode(errors="replace")[:MAX_OUTPUT_CHARS].strip()
    if proc.returncode != 0:
        log.warning(
            "command_failed",
            command=command,
            args=list(args),
            returncode=proc.returncode,
            stderr=err[:500],
        )
        return CommandResult(
            ok=False,
            code=proc.returncode,
            stdout=out,
            stderr=err,
            message=f"{command} exited with code {proc.returncode}",
        )
    return CommandResult(ok=True, code=0, stdout=out, stderr=err)

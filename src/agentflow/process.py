"""Async subprocess helpers (git, claude, bd)."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from agentflow.errors import CommandError

logger = logging.getLogger(__name__)


async def run_command(
    *cmd: str, cwd: Path | str | None = None, timeout: float | None = 60
) -> tuple[int, str, str]:
    """Run a command without blocking the event loop.

    Returns (returncode, stdout, stderr). ``timeout=None`` waits forever.
    """
    logger.debug("exec %s (cwd=%s)", " ".join(cmd), cwd)
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        cwd=str(cwd) if cwd is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise
    return (
        proc.returncode or 0,
        (stdout_bytes or b"").decode(errors="replace"),
        (stderr_bytes or b"").decode(errors="replace"),
    )


async def check_output(
    *cmd: str, cwd: Path | str | None = None, timeout: float | None = 60
) -> str:
    """Run a command and return stdout; raises CommandError on non-zero exit."""
    code, stdout, stderr = await run_command(*cmd, cwd=cwd, timeout=timeout)
    if code != 0:
        raise CommandError(list(cmd), code, stderr or stdout)
    return stdout

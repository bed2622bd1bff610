"""Subprocess helpers shared by the Linux network collaborators."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class PlatformError(RuntimeError):
    """Raised when a platform networking call fails."""


async def run_command(
    args: Sequence[str], *, timeout: Optional[float] = None, secrets: Sequence[str] = ()
) -> str:
    """
    Run *args* and return its stdout.

    Values listed in ``secrets`` are masked in the debug log.
    Raises PlatformError on a non-zero exit status, a missing executable or a timeout.
    """
    shown = ["***" if arg in secrets else arg for arg in args]
    logger.debug("exec: %s", " ".join(shown))
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise PlatformError(f"{args[0]} not found") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise PlatformError(f"{args[0]} timed out") from exc
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise PlatformError(message or f"{args[0]} exited with status {proc.returncode}")
    return stdout.decode("utf-8", errors="replace")


__all__ = ["PlatformError", "run_command"]

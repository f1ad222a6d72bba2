"""Launching the local Nevermore binary and waiting for it to listen.

The binary has no readiness probe, so readiness is detected by watching its
stderr for a "listening" line. `is_ready_line` is the only place that
knows about that message.
"""

import asyncio
import os
import stat
from pathlib import Path
from typing import Awaitable, Callable

from rich.markup import escape

from .errors import NevermoreError
from .session import Session
from .ui import console

READINESS_MARKER = "listening"
READINESS_TIMEOUT = 1.5
DEV_PORT = 8000


class LaunchError(NevermoreError):
    title = "Launch Error"


class ReadinessTimeout(LaunchError):
    title = "Readiness Timeout"


def is_ready_line(line: str) -> bool:
    return READINESS_MARKER in line


def dev_command(binary: Path, port: int = DEV_PORT) -> list[str]:
    return [str(binary), "--dev", "--port", str(port)]


def make_executable(path: Path):
    """Add execute bits matching the existing read bits (no-op on Windows)."""
    if os.name == "nt":
        return
    mode = path.stat().st_mode
    new_mode = mode | stat.S_IXUSR
    if mode & stat.S_IRGRP:
        new_mode |= stat.S_IXGRP
    if mode & stat.S_IROTH:
        new_mode |= stat.S_IXOTH
    if new_mode != mode:
        os.chmod(path, new_mode)


async def _pump(stream: asyncio.StreamReader, on_line: Callable[[str], None]):
    async for raw in stream:
        on_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))


async def run_until_exit(
    session: Session,
    command: list[str],
    on_ready: Callable[[], Awaitable[object]],
    *,
    timeout: float = READINESS_TIMEOUT,
) -> int:
    """Start ``command``, run ``on_ready`` once it is listening, return its exit code.

    ``on_ready`` runs at most once, however many ready lines follow. The
    session is cancelled when the child exits.

    Raises:
        LaunchError: the binary could not be started.
        ReadinessTimeout: no ready line within ``timeout`` seconds; the
            child has been terminated.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        session.cancel()
        raise LaunchError(f"Couldn't start {command[0]}: {e}") from e
    session.process = process

    ready = asyncio.Event()

    def on_stderr(line: str):
        console.print(f"[dim]{escape(line)}[/dim]", highlight=False)
        if not ready.is_set() and is_ready_line(line):
            ready.set()

    def on_stdout(line: str):
        console.print(escape(line), highlight=False)

    pumps = [
        asyncio.create_task(_pump(process.stderr, on_stderr)),
        asyncio.create_task(_pump(process.stdout, on_stdout)),
    ]
    ready_wait = asyncio.create_task(ready.wait())
    exit_wait = asyncio.create_task(process.wait())

    try:
        done, _ = await asyncio.wait({ready_wait, exit_wait}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if ready_wait in done:
            await on_ready()
        elif exit_wait not in done:
            session.cancel()
            await process.wait()
            raise ReadinessTimeout(
                f"Nevermore did not report '{READINESS_MARKER}' within {timeout * 1000:.0f} ms"
            )
        returncode = await exit_wait
        await asyncio.gather(*pumps)
    finally:
        ready_wait.cancel()
        if not exit_wait.done():
            session.cancel()
            exit_wait.cancel()
        for pump in pumps:
            pump.cancel()

    session.cancel()
    return returncode

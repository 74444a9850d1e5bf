"""
Local execution of external commands.

Runs git, package managers and test runners as child processes of the
grader without blocking the event loop, enforcing a per-command timeout.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class CommandTimeout(Exception):
    """The command did not finish within its timeout and was killed."""

    def __init__(self, command: list[str], timeout_seconds: float, output: str = "") -> None:
        super().__init__(f"'{' '.join(command)}' timed out after {timeout_seconds:g}s")
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.output = output


class CommandResult(BaseModel):
    command: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


async def run_command(
    command: list[str],
    cwd: Path | None = None,
    timeout_seconds: float = 120,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """
    Run a command and capture its output.

    Args:
        command: Program and arguments.
        cwd: Working directory.
        timeout_seconds: Maximum run time before the process is killed.
        env: Extra environment variables layered over the current environment.

    Returns:
        CommandResult with exit code, output and duration.

    Raises:
        CommandTimeout: If the process exceeds the timeout.
        OSError: If the process could not be started (e.g. program missing).
    """
    # Set up environment
    full_env = os.environ.copy()
    if env:
        full_env.update(env)

    logger.debug("Executing: %s (cwd=%s)", " ".join(command), cwd)
    started = time.monotonic()

    process = await asyncio.create_subprocess_exec(
        *command,
        cwd=str(cwd) if cwd else None,
        env=full_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()
        raise CommandTimeout(command, timeout_seconds, _decode(stdout) + _decode(stderr))

    return CommandResult(
        command=command,
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=_decode(stdout),
        stderr=_decode(stderr),
        duration_seconds=time.monotonic() - started,
    )


def _decode(data: bytes | None) -> str:
    return data.decode("utf-8", errors="replace") if data else ""

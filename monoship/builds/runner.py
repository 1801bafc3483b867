"""Command runner for build substrate invocations.

This module handles:
- Executing substrate commands as asyncio subprocesses
- Capturing combined stdout/stderr to log files
- Enforcing command timeouts
- Killing the child process when the calling task is cancelled
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandLaunchError(Exception):
    """Raised when a command cannot be started or times out."""

    def __init__(self, message: str, code: str = "execution_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        exit_code: Process exit code.
        output: Combined stdout/stderr text.
        log_path: Path to the command log file.
        command: The command that was executed.
        started_at: Start time.
        finished_at: Finish time.
    """

    exit_code: int
    output: str
    log_path: Path
    command: str
    started_at: datetime
    finished_at: datetime

    @property
    def success(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        process.kill()
        await process.wait()


async def run_command(
    cmd: list[str],
    log_path: Path,
    timeout: float | None = None,
    input_data: bytes | None = None,
) -> CommandResult:
    """Run a command, logging its output to ``log_path``.

    Args:
        cmd: Command as a list of strings.
        log_path: Log file to write (created with parents).
        timeout: Timeout in seconds (None = no timeout).
        input_data: Bytes written to the process stdin.

    Returns:
        CommandResult; a non-zero exit code is not an error here.

    Raises:
        CommandLaunchError: If the command cannot start or times out.
        asyncio.CancelledError: If the calling task is cancelled; the
            child process is killed first.
    """
    cmd_str = shlex.join(cmd)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Executing: %s", cmd_str)

    started_at = datetime.now(timezone.utc)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if input_data is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        logger.error("Failed to execute %s: %s", cmd[0], e)
        raise CommandLaunchError(f"Failed to execute {cmd[0]}: {e}") from e

    try:
        stdout, _ = await asyncio.wait_for(
            process.communicate(input_data), timeout=timeout
        )
    except asyncio.TimeoutError as e:
        await _terminate(process)
        with log_path.open("a") as log_file:
            log_file.write(f"# Command: {cmd_str}\n# TIMEOUT after {timeout} seconds\n")
        raise CommandLaunchError(
            f"Command timed out after {timeout} seconds: {cmd_str}",
            code="timeout",
        ) from e
    except asyncio.CancelledError:
        await _terminate(process)
        raise

    finished_at = datetime.now(timezone.utc)
    exit_code = process.returncode if process.returncode is not None else -1
    output = stdout.decode("utf-8", errors="replace")

    with log_path.open("w") as log_file:
        log_file.write(f"# Command: {cmd_str}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.write(output)
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    if exit_code != 0:
        logger.error("Command failed with exit code %d. See log: %s", exit_code, log_path)

    return CommandResult(
        exit_code=exit_code,
        output=output,
        log_path=log_path,
        command=cmd_str,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = ["CommandLaunchError", "CommandResult", "run_command"]

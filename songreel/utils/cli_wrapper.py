"""Async subprocess execution for ffmpeg and ffprobe.

Media assembly shells out to ffmpeg. Workers must not block the event loop
while it runs, so commands go through ``asyncio.create_subprocess_exec`` with
a hard timeout; a timed-out process is killed before the error propagates.
"""

import asyncio
from dataclasses import dataclass

from songreel.utils.logging import get_logger

log = get_logger(__name__)


class CommandError(Exception):
    """Raised when a command exits with a non-zero code.

    Attributes:
        command (str): Executable name (e.g., "ffmpeg")
        exit_code (int): Process exit code
        stderr (str): Captured stderr output (tail)
    """

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command: str = command
        self.exit_code: int = exit_code
        self.stderr: str = stderr
        super().__init__(f"{command} failed with exit code {exit_code}: {stderr}")


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


async def run_command(args: list[str], timeout: float = 600) -> CommandResult:
    """Run an external command without blocking the event loop.

    Args:
        args: Executable followed by its arguments.
        timeout: Seconds before the process is killed.

    Returns:
        CommandResult with decoded stdout/stderr.

    Raises:
        CommandError: Non-zero exit code.
        TimeoutError: Process exceeded ``timeout``.
        FileNotFoundError: Executable not installed.
    """
    log.debug("command_started", command=args[0], arg_count=len(args) - 1, timeout=timeout)

    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        log.error("command_timeout", command=args[0], timeout=timeout)
        raise TimeoutError(f"{args[0]} timed out after {timeout}s") from None

    result = CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if result.returncode != 0:
        log.error(
            "command_failed",
            command=args[0],
            exit_code=result.returncode,
            stderr=result.stderr[-500:],
        )
        raise CommandError(args[0], result.returncode, result.stderr[-2000:])

    return result

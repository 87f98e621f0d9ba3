"""Tests for the async subprocess wrapper.

Uses real, always-available executables (``sys.executable``) so the
subprocess plumbing is exercised without ffmpeg.
"""

import sys

import pytest

from songreel.utils.cli_wrapper import CommandError, CommandResult, run_command


@pytest.mark.asyncio
async def test_run_command_captures_stdout():
    result = await run_command([sys.executable, "-c", "print('182.46')"])

    assert isinstance(result, CommandResult)
    assert result.returncode == 0
    assert result.stdout.strip() == "182.46"


@pytest.mark.asyncio
async def test_non_zero_exit_raises_command_error():
    with pytest.raises(CommandError) as exc_info:
        await run_command(
            [sys.executable, "-c", "import sys; sys.stderr.write('Invalid data'); sys.exit(3)"]
        )

    assert exc_info.value.exit_code == 3
    assert "Invalid data" in exc_info.value.stderr


@pytest.mark.asyncio
async def test_timeout_kills_process():
    with pytest.raises(TimeoutError, match="timed out"):
        await run_command([sys.executable, "-c", "import time; time.sleep(10)"], timeout=0.2)


@pytest.mark.asyncio
async def test_missing_executable_raises():
    with pytest.raises(FileNotFoundError):
        await run_command(["songreel-definitely-not-installed"])

"""Tests for command library."""

import pytest

from krm_functions.command import Command, run, run_piped
from krm_functions.exceptions import CommandException, HelmException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_run_piped_command() -> None:
    """Test running commands piped together."""
    result = await run_piped(
        [
            Command(["echo", "Hello"]),
            Command(["sed", "s/Hello/Goodbye/"]),
        ]
    )
    assert result == "Goodbye\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_command_exception_type() -> None:
    """Test the configured exception is raised on failure."""
    with pytest.raises(HelmException):
        await run(Command(["/bin/false"], exc=HelmException))


async def test_command_not_found() -> None:
    """Test a command that does not exist."""
    with pytest.raises(CommandException, match="not found"):
        await run(Command(["/does/not/exist"]))


async def test_command_env() -> None:
    """Test environment variables are added to the command."""
    result = await run(Command(["sh", "-c", "echo $KRM_TEST"], env={"KRM_TEST": "x"}))
    assert result == "x\n"


async def test_command_timeout() -> None:
    """Test a command that does not complete in time."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "5"], timeout=0.1))

"""Test helpers for krm-functions tools."""

from krm_functions.command import Command, run

KRM_FUNCTIONS_BIN = "krm-functions"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([KRM_FUNCTIONS_BIN] + args, env=env))

"""Shell commands issued while building and verifying deployments."""

import asyncio
import logging
from pathlib import Path
from typing import Final

from binarydeploy.errors import BuildError

logger = logging.getLogger(__name__)

BUILD_TIMEOUT: Final = 900.0
SMOKE_TEST_TIMEOUT: Final = 5.0

# How much build output to keep in a BuildError message
_OUTPUT_TAIL_CHARS: Final = 2000


async def run_shell(command: str, cwd: Path, timeout: float = BUILD_TIMEOUT) -> str:
    """Run ``command`` through the shell in ``cwd``.

    Returns:
        Combined stdout and stderr.

    Raises:
        BuildError: If the command cannot start, exits nonzero or times out.
    """
    if not command.strip():
        raise BuildError("empty build command")

    logger.info(f"Running build command: {command} (in {cwd})")

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as err:
        raise BuildError(f"failed to start build command '{command}': {err}") from err

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as err:
        process.kill()
        await process.wait()
        raise BuildError(f"build command timed out after {timeout}s: {command}") from err

    output = stdout.decode("utf-8", errors="replace") if stdout else ""
    if output:
        logger.debug(f"Build output:\n{output}")

    if process.returncode != 0:
        raise BuildError(
            f"build command '{command}' failed with exit code {process.returncode}: "
            f"{output[-_OUTPUT_TAIL_CHARS:]}",
            exit_code=process.returncode,
        )

    return output


async def _run_quietly(binary: Path, flag: str, timeout: float) -> bool:
    try:
        process = await asyncio.create_subprocess_exec(
            str(binary),
            flag,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as err:
        logger.debug(f"Could not execute {binary} {flag}: {err}")
        return False

    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        logger.debug(f"{binary} {flag} timed out after {timeout}s")
        return False

    return process.returncode == 0


async def smoke_test(binary: Path, timeout: float = SMOKE_TEST_TIMEOUT) -> bool:
    """Check that ``binary`` runs with ``--version``, falling back to ``--help``."""
    if await _run_quietly(binary, "--version", timeout):
        return True
    return await _run_quietly(binary, "--help", timeout)

"""OS-facing process primitives.

The supervisor only talks to the operating system through this interface:
spawn a shell command in its own process group, deliver signals to a pid or a
whole group, and probe liveness. Linux process-group and ``/proc`` semantics
live in ``PosixProcessController``.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path

from binarydeploy.errors import ProcessSpawnError

logger = logging.getLogger(__name__)


class ProcessController(ABC):
    """Abstract process backend used by the supervisor."""

    @abstractmethod
    async def spawn(
        self,
        command: str,
        cwd: Path,
    ) -> asyncio.subprocess.Process:
        """Start ``command`` through the shell as a new process group leader."""
        ...

    @abstractmethod
    def signal(self, pid: int, sig: int) -> None:
        """Send ``sig`` to a single process."""
        ...

    @abstractmethod
    def signal_group(self, pgid: int, sig: int) -> None:
        """Send ``sig`` to every process in a group."""
        ...

    @abstractmethod
    def get_process_group(self, pid: int) -> int:
        """Return the process group id of ``pid``."""
        ...

    @abstractmethod
    def is_alive(self, pid: int) -> bool:
        """Return True if ``pid`` still refers to a running process."""
        ...


class PosixProcessController(ProcessController):
    """Process backend for Linux and other POSIX systems."""

    def __init__(self, proc_root: Path = Path("/proc")):
        self.proc_root = proc_root

    async def spawn(
        self,
        command: str,
        cwd: Path,
    ) -> asyncio.subprocess.Process:
        logger.info(f"Spawning '{command}' in {cwd} with a new process group")
        try:
            # start_new_session makes the shell the leader of a fresh group
            return await asyncio.create_subprocess_shell(
                command,
                cwd=str(cwd),
                start_new_session=True,
            )
        except OSError as err:
            raise ProcessSpawnError(f"failed to start '{command}' in {cwd}: {err}") from err

    def signal(self, pid: int, sig: int) -> None:
        os.kill(pid, sig)

    def signal_group(self, pgid: int, sig: int) -> None:
        os.killpg(pgid, sig)

    def _read_stat(self, pid: int) -> list[str] | None:
        try:
            data = (self.proc_root / str(pid) / "stat").read_text()
        except OSError:
            return None
        # comm (field 2) is parenthesised and may contain spaces
        _, _, rest = data.rpartition(")")
        return rest.split()

    def get_process_group(self, pid: int) -> int:
        fields = self._read_stat(pid)
        if fields and len(fields) >= 3:
            try:
                # state, ppid, pgrp follow the command name
                return int(fields[2])
            except ValueError:
                logger.debug(f"Invalid pgid in /proc stat for pid {pid}")
        return os.getpgid(pid)

    def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by someone else
            return True

        fields = self._read_stat(pid)
        # Zombies have exited and only wait to be reaped
        return not (fields and fields[0] == "Z")

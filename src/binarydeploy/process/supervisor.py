"""Supervisor for the single deployed application process.

The supervisor owns at most one ``ManagedProcess``. Starting a new process
always terminates the previous one first, and a single supervising loop
watches the current generation, restarting it on unexpected exit until the
descriptor's restart budget is spent.

Termination escalates through tiers, checking for exit after each one:

1. Mark the process as stopping (the supervising loop ignores its exit)
2. SIGTERM the whole process group and wait ``group_grace`` seconds
3. SIGTERM the process itself and wait ``term_grace`` seconds
4. SIGKILL the process and wait for it to exit
5. Give up with ``ProcessTerminationError`` if it is somehow still alive
"""

import asyncio
import contextlib
import logging
import signal
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, Final

from binarydeploy.config import DeploymentConfig
from binarydeploy.errors import ProcessSpawnError, ProcessTerminationError
from binarydeploy.process.controller import PosixProcessController, ProcessController

logger = logging.getLogger(__name__)

# Grace windows for the termination tiers, in seconds
GROUP_TERM_GRACE: Final = 3.0
TERM_GRACE: Final = 5.0
KILL_WAIT: Final = 5.0


@dataclass
class ManagedProcess:
    """One generation of the supervised application."""

    pid: int
    handle: asyncio.subprocess.Process
    config: DeploymentConfig
    working_dir: Path
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    restart_count: int = 0
    stopping: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def uptime(self) -> timedelta:
        return datetime.now(UTC) - self.started_at

    def cancel(self) -> None:
        """Signal that this generation is being stopped on purpose."""
        self.stopping.set()


def _format_uptime(uptime: timedelta) -> str:
    return str(timedelta(seconds=int(uptime.total_seconds())))


class ProcessSupervisor:
    """Runs and restarts exactly one application process.

    Writers (``start_process``, ``stop_current_process`` and the supervising
    loop) serialize on one lock. Status reads take no lock: they run on the
    event loop without awaiting, so they always see a consistent slot.
    """

    def __init__(
        self,
        controller: ProcessController | None = None,
        group_grace: float = GROUP_TERM_GRACE,
        term_grace: float = TERM_GRACE,
        kill_wait: float = KILL_WAIT,
    ):
        self.controller = controller or PosixProcessController()
        self.group_grace = group_grace
        self.term_grace = term_grace
        self.kill_wait = kill_wait
        self._current: ManagedProcess | None = None
        self._supervise_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._last_restart_count = 0
        self._last_exit_code: int | None = None
        # Terminations keep running when the caller that began them is cancelled
        self._terminations: set[asyncio.Task] = set()

    async def start_process(
        self,
        config: DeploymentConfig,
        working_dir: Path | str,
    ) -> ManagedProcess:
        """Replace any running process with a new one running ``config.run_command``.

        A previous process that refuses to die is logged and abandoned so it
        cannot block the new deployment.

        Raises:
            ProcessSpawnError: If the run command cannot be started.
        """
        working_dir = Path(working_dir)

        async with self._lock:
            await self._cancel_supervision()
            previous, self._current = self._current, None
            await self._drain_terminations()

            if previous is not None:
                try:
                    await asyncio.shield(self._begin_termination(previous))
                    logger.info(f"Existing process {previous.pid} stopped successfully")
                except ProcessTerminationError as err:
                    logger.error(f"Failed to stop existing process, starting new one anyway: {err}")

            process = await self._spawn(config, working_dir)
            self._install(process)
            self._supervise_task = asyncio.create_task(
                self._supervise(process),
                name=f"supervise-{process.pid}",
            )

        logger.info(
            f"Process started successfully: pid={process.pid} "
            f"command={config.run_command!r} working_dir={working_dir}"
        )
        return process

    async def stop_current_process(self) -> None:
        """Stop the current process, if any.

        The slot is cleared under the lock, then the process is terminated
        outside it so status reads and the supervising loop never wait on a
        slow shutdown.

        Terminations left running by cancelled callers are awaited too, so a
        replacement interrupted by shutdown never leaves its old process behind.

        Raises:
            ProcessTerminationError: If the process survives SIGKILL.
        """
        async with self._lock:
            await self._cancel_supervision()
            process, self._current = self._current, None

        await self._drain_terminations()
        if process is None:
            return

        await asyncio.shield(self._begin_termination(process))

    async def shutdown(self) -> None:
        """Stop the supervised process when the agent exits."""
        await self.stop_current_process()

    async def join(self) -> None:
        """Wait until the supervising loop ends and no restart is pending."""
        task = self._supervise_task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def is_running(self) -> bool:
        return self._current is not None

    def get_current_pid(self) -> int:
        """PID of the current process, or 0 when nothing runs."""
        process = self._current
        return process.pid if process is not None else 0

    def get_current_working_dir(self) -> str:
        process = self._current
        return str(process.working_dir) if process is not None else ""

    def get_web_status(self) -> dict[str, Any]:
        """Snapshot of the supervised process for the status endpoint."""
        process = self._current
        status: dict[str, Any] = {
            "running": False,
            "pid": 0,
            "uptime": "",
            "command": "",
            "working_dir": "",
            "restart_count": self._last_restart_count,
            "last_exit_code": self._last_exit_code,
            "config": {},
        }

        if process is not None:
            status.update(
                running=True,
                pid=process.pid,
                uptime=_format_uptime(process.uptime),
                command=process.config.run_command,
                working_dir=str(process.working_dir),
                restart_count=process.restart_count,
                config=process.config.model_dump(
                    include={
                        "build_command",
                        "run_command",
                        "working_dir",
                        "environment",
                        "port",
                        "max_restarts",
                        "restart_delay",
                    }
                ),
            )

        return status

    async def _spawn(
        self,
        config: DeploymentConfig,
        working_dir: Path,
        restart_count: int = 0,
    ) -> ManagedProcess:
        handle = await self.controller.spawn(config.run_command, working_dir)
        return ManagedProcess(
            pid=handle.pid,
            handle=handle,
            config=config,
            working_dir=working_dir,
            restart_count=restart_count,
        )

    def _install(self, process: ManagedProcess) -> None:
        self._current = process
        self._last_restart_count = process.restart_count
        self._last_exit_code = None

    async def _cancel_supervision(self) -> None:
        # Callers hold the lock; the loop only respawns while holding it, so it
        # is never cancelled halfway through a spawn.
        task, self._supervise_task = self._supervise_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _supervise(self, process: ManagedProcess) -> None:
        """Watch successive generations until one is stopped or the budget runs out."""
        while True:
            exit_code = await process.handle.wait()

            async with self._lock:
                if self._current is not process or process.stopping.is_set():
                    # Superseded by a concurrent start or stop
                    return
                self._current = None
                self._last_exit_code = exit_code

            uptime = _format_uptime(process.uptime)
            if exit_code == 0:
                logger.info(f"Process {process.pid} exited normally after {uptime}")
            else:
                logger.error(f"Process {process.pid} exited with code {exit_code} after {uptime}")

            config = process.config
            if config.max_restarts <= 0 or process.restart_count >= config.max_restarts:
                logger.info(
                    f"Process will not be restarted "
                    f"(restart_count={process.restart_count}, max_restarts={config.max_restarts})"
                )
                return

            attempt = process.restart_count + 1
            logger.info(
                f"Restarting process: attempt {attempt}/{config.max_restarts} "
                f"in {config.restart_delay}s"
            )
            await asyncio.sleep(config.restart_delay)

            async with self._lock:
                try:
                    process = await self._spawn(config, process.working_dir, restart_count=attempt)
                except ProcessSpawnError as err:
                    logger.error(f"Failed to restart process: {err}")
                    return
                self._install(process)

            logger.info(f"Process restarted successfully: pid={process.pid}")

    def _begin_termination(self, process: ManagedProcess) -> asyncio.Task:
        task = asyncio.create_task(self._terminate(process), name=f"terminate-{process.pid}")
        self._terminations.add(task)
        task.add_done_callback(self._terminations.discard)
        return task

    async def _drain_terminations(self) -> None:
        """Wait for terminations whose callers were cancelled midway."""
        for task in list(self._terminations):
            try:
                await asyncio.shield(task)
            except ProcessTerminationError as err:
                logger.error(f"Detached process could not be stopped: {err}")

    def _has_exited(self, process: ManagedProcess) -> bool:
        return process.handle.returncode is not None or not self.controller.is_alive(process.pid)

    async def _wait_exit(self, process: ManagedProcess, timeout: float) -> bool:
        try:
            await asyncio.wait_for(process.handle.wait(), timeout=timeout)
        except TimeoutError:
            pass
        return self._has_exited(process)

    async def _terminate(self, process: ManagedProcess) -> None:
        """Terminate ``process`` through the escalation tiers."""
        pid = process.pid
        logger.info(f"Stopping process {pid}")

        process.cancel()
        if self._has_exited(process):
            logger.info(f"Process {pid} already exited")
            return

        try:
            pgid = self.controller.get_process_group(pid)
        except OSError as err:
            logger.warning(f"Failed to get process group for {pid}, using individual PID: {err}")
        else:
            logger.info(f"Attempting process group termination: pid={pid} pgid={pgid}")
            try:
                self.controller.signal_group(pgid, signal.SIGTERM)
            except OSError as err:
                logger.warning(f"Failed to send SIGTERM to process group {pgid}: {err}")
            else:
                if await self._wait_exit(process, self.group_grace):
                    logger.info(f"Process group terminated gracefully: pid={pid} pgid={pgid}")
                    return

        logger.info(f"Process group termination failed or incomplete, trying individual PID {pid}")
        if self._has_exited(process):
            return

        try:
            self.controller.signal(pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        except OSError as err:
            logger.warning(f"Failed to send SIGTERM to {pid}: {err}")
        else:
            if await self._wait_exit(process, self.term_grace):
                # Negative return codes are signal deaths, which is what we asked for
                logger.info(f"Process {pid} terminated gracefully (returncode={process.handle.returncode})")
                return
            logger.warning(f"Process {pid} didn't terminate within {self.term_grace}s, forcing")

        if self._has_exited(process):
            return

        try:
            self.controller.signal(pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except OSError as err:
            logger.error(f"Failed to kill process {pid}: {err}")
            raise ProcessTerminationError(pid) from err

        if not await self._wait_exit(process, self.kill_wait):
            logger.error(f"Process {pid} still running after kill attempt")
            raise ProcessTerminationError(pid)

        logger.info(f"Process {pid} force-killed")

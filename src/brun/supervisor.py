import logging
import os
import shlex
import signal
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .constants import APP_NAME, DEFAULT_GRACE_PERIOD
from .errors import SpawnFailed

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class CommandSpec:
    """The user command, fixed for the lifetime of the loop.

    Attributes:
        argv (tuple[str, ...]): Program followed by its arguments.
        cwd (Path | None): Working directory for the child (the checkout root).
        shell (bool): Run the argv joined with spaces through `sh -c`.
    """

    argv: tuple[str, ...]
    cwd: Path | None = None
    shell: bool = False

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec requires at least a program name")

    def display(self) -> str:
        """Returns the command as it would be typed in a shell."""
        return " ".join(self.argv) if self.shell else shlex.join(self.argv)


class ProcessState(Enum):
    """Lifecycle of a single child process."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class TerminationKind(Enum):
    """How a terminated child went away."""

    GRACEFUL = "graceful"
    KILLED = "killed"
    ALREADY_EXITED = "already-exited"


@dataclass(frozen=True)
class TerminationOutcome:
    """Result of `ProcessSupervisor.terminate`.

    Attributes:
        kind (TerminationKind): Whether the child honored SIGTERM.
        returncode (int | None): The child's final exit status.
    """

    kind: TerminationKind
    returncode: int | None


@dataclass
class ProcessHandle:
    """A child started by the supervisor.

    Attributes:
        pid (int): The child's process id (also its process group id).
        started_at (float): Unix timestamp of the spawn.
        spec (CommandSpec): The command that was launched.
        state (ProcessState): Current lifecycle state.
        returncode (int | None): Exit status once the child is gone.
    """

    pid: int
    started_at: float
    spec: CommandSpec
    popen: subprocess.Popen = field(repr=False)
    state: ProcessState = ProcessState.STARTING
    returncode: int | None = None

    @property
    def alive(self) -> bool:
        return self.state in (ProcessState.RUNNING, ProcessState.TERMINATING)


class ProcessSupervisor:
    """Starts, observes and stops the user command.

    Children run in their own session so that SIGTERM/SIGKILL reach every
    process the command spawned, not only the top-level one.

    Attributes:
        grace_timeout (float): Default seconds allowed for a graceful exit.
    """

    def __init__(self, grace_timeout: float = DEFAULT_GRACE_PERIOD):
        self.grace_timeout = grace_timeout

    def start(self, spec: CommandSpec) -> ProcessHandle:
        """Spawns the command with inherited standard streams.

        Args:
            spec (CommandSpec): The command to run.

        Returns:
            ProcessHandle: A handle in the RUNNING state.

        Raises:
            SpawnFailed: If the program is missing or cannot be executed.
        """
        args: list[str] | str = list(spec.argv)
        if spec.shell:
            args = " ".join(spec.argv)

        try:
            popen = subprocess.Popen(
                args,
                cwd=spec.cwd,
                shell=spec.shell,
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnFailed(f"failed to start command '{spec.display()}': {e}") from e

        handle = ProcessHandle(
            pid=popen.pid, started_at=time.time(), spec=spec, popen=popen
        )
        handle.state = ProcessState.RUNNING
        logger.info(f"Started '{spec.display()}' (pid {handle.pid}).")
        return handle

    def poll(self, handle: ProcessHandle) -> int | None:
        """Checks, without blocking, whether the child exited on its own.

        Args:
            handle (ProcessHandle): The child to check.

        Returns:
            int | None: The exit status, or None if it is still running.
        """
        if handle.state is ProcessState.RUNNING:
            rc = handle.popen.poll()
            if rc is not None:
                handle.state = ProcessState.EXITED
                handle.returncode = rc
        return handle.returncode

    def terminate(
        self, handle: ProcessHandle, grace_timeout: float | None = None
    ) -> TerminationOutcome:
        """Stops the child: SIGTERM, wait up to the grace period, then SIGKILL.

        Args:
            handle (ProcessHandle): The child to stop.
            grace_timeout (float | None, optional): Overrides the supervisor's
                default grace period.

        Returns:
            TerminationOutcome: How the child went away and its exit status.
        """
        grace = self.grace_timeout if grace_timeout is None else grace_timeout

        if self.poll(handle) is not None or handle.state is ProcessState.TERMINATED:
            return TerminationOutcome(TerminationKind.ALREADY_EXITED, handle.returncode)

        handle.state = ProcessState.TERMINATING
        logger.info(f"Stopping pid {handle.pid} (grace {grace:g}s)...")
        self._signal(handle, signal.SIGTERM)

        try:
            rc = handle.popen.wait(timeout=grace)
            kind = TerminationKind.GRACEFUL
        except subprocess.TimeoutExpired:
            logger.warning(f"pid {handle.pid} ignored SIGTERM; sending SIGKILL.")
            self._signal(handle, signal.SIGKILL)
            rc = handle.popen.wait()
            kind = TerminationKind.KILLED

        handle.state = ProcessState.TERMINATED
        handle.returncode = rc
        return TerminationOutcome(kind, rc)

    @staticmethod
    def _signal(handle: ProcessHandle, sig: int) -> None:
        """Delivers a signal to the child's whole process group."""
        try:
            if hasattr(os, "killpg"):
                os.killpg(handle.pid, sig)
            elif sig == signal.SIGTERM:
                handle.popen.terminate()
            else:
                handle.popen.kill()
        except ProcessLookupError:
            pass  # Already gone.

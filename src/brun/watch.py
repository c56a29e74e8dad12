"""The watch-pull-restart loop.

`WatchLoop` is an explicit state machine with a single owner of mutable state.
`step()` performs one transition; `run()` drives it until a stop is requested
or a fatal error occurs, and always leaves no child process behind.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .config import WatchConfig
from .constants import APP_NAME
from .errors import BrunError, UserCommandFailed
from .remote import RefResolver
from .supervisor import CommandSpec, ProcessHandle, ProcessSupervisor
from .sync import WorkingTreeSync

logger = logging.getLogger(APP_NAME)


class LoopState(Enum):
    INITIALIZING = "initializing"
    POLLING = "polling"
    CHANGED = "changed"
    SYNCING = "syncing"
    RESTARTING = "restarting"
    ERROR_BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclass
class WatchState:
    """Mutable state owned by the loop.

    Attributes:
        last_seen (str | None): Tip applied by the last completed cycle.
        pending (str | None): Tip being synced by the current cycle.
        current_child (ProcessHandle | None): The single managed child.
        consecutive_errors (int): Transient failures since the last good poll.
        last_exit_status (int | None): Status of the last spontaneous exit.
        restarts (int): Number of children started so far.
    """

    last_seen: str | None = None
    pending: str | None = None
    current_child: ProcessHandle | None = None
    consecutive_errors: int = 0
    last_exit_status: int | None = None
    restarts: int = 0


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential retry delay for the given 1-based attempt, capped at `cap`."""
    if attempt < 1:
        return 0.0
    return min(cap, base * 2 ** (attempt - 1))


class WatchLoop:
    """Polls the remote tip and restarts the command whenever it advances.

    Attributes:
        resolver (RefResolver): Reads the remote tip.
        syncer (WorkingTreeSync): Fast-forwards the checkout.
        supervisor (ProcessSupervisor): Manages the child process.
        spec (CommandSpec): The command to (re)start.
        branch (str): The tracked branch.
        config (WatchConfig): Timings and failure policy.
        state (WatchState): The loop's mutable state.
        phase (LoopState): The state the next `step()` will execute.
    """

    def __init__(
        self,
        resolver: RefResolver,
        syncer: WorkingTreeSync,
        supervisor: ProcessSupervisor,
        spec: CommandSpec,
        branch: str,
        config: WatchConfig | None = None,
    ):
        self.resolver = resolver
        self.syncer = syncer
        self.supervisor = supervisor
        self.spec = spec
        self.branch = branch
        self.config = config or WatchConfig()
        self.state = WatchState()
        self.phase = LoopState.INITIALIZING
        self._stop = threading.Event()

    # --- Control ---

    def request_stop(self) -> None:
        """Asks the loop to exit. Safe to call from a signal handler."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _wait(self, seconds: float) -> bool:
        """Blocks for `seconds` unless a stop is requested. Returns True if stopped."""
        return self._stop.wait(max(seconds, 0.0))

    def run(self) -> None:
        """Drives the state machine until stopped.

        Raises:
            BrunError: Any fatal error, tagged with the phase it happened in.
                The child is terminated before the error propagates.
        """
        logger.info(
            f"Listening for changes from {self.resolver.describe(self.branch)}"
        )
        try:
            while not self.stopping and self.phase is not LoopState.STOPPED:
                self.step()
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        """Terminates the managed child, if any, and marks the loop stopped."""
        self.phase = LoopState.STOPPED
        self._observe_child(halt=False)
        child = self.state.current_child
        if child is not None and child.alive:
            outcome = self.supervisor.terminate(child, self.config.grace_period)
            logger.info(
                f"Child pid {child.pid} stopped ({outcome.kind.value}, "
                f"code={outcome.returncode})."
            )
        self.state.current_child = None

    # --- Transitions ---

    def step(self) -> LoopState:
        """Executes one transition and returns the next state."""
        handler = {
            LoopState.INITIALIZING: self._initialize,
            LoopState.POLLING: self._poll,
            LoopState.CHANGED: self._changed,
            LoopState.SYNCING: self._sync,
            LoopState.RESTARTING: self._restart,
            LoopState.ERROR_BACKOFF: self._backoff,
        }.get(self.phase)
        if handler is None:
            return self.phase

        current = self.phase
        try:
            self.phase = handler()
        except BrunError as e:
            if self.stopping:
                # Signals reach the whole process group, so git may die with us.
                logger.info(f"{current.value} interrupted by shutdown: {e}")
                self.phase = LoopState.STOPPED
            elif e.transient:
                logger.warning(f"{current.value}: {e}")
                self.phase = LoopState.ERROR_BACKOFF
            else:
                e.phase = e.phase or current.value
                self.phase = LoopState.STOPPED
                raise
        return self.phase

    def _initialize(self) -> LoopState:
        # No last-seen tip, so the first successful poll always counts as a change.
        self.state = WatchState()
        return LoopState.POLLING

    def _poll(self) -> LoopState:
        tip = self.resolver.resolve(self.branch)
        self.state.consecutive_errors = 0

        if tip != self.state.last_seen:
            self.state.pending = tip
            return LoopState.CHANGED

        logger.debug(f"No change at {tip[:10]}.")
        self._observe_child()
        self._wait(self.config.period)
        return LoopState.POLLING

    def _changed(self) -> LoopState:
        logger.info(
            f"Remote branch changed: {self.state.last_seen or 'null'} -> "
            f"{self.state.pending}"
        )
        return LoopState.SYNCING

    def _sync(self) -> LoopState:
        target = self.state.pending
        if target is None:
            return LoopState.POLLING
        result = self.syncer.sync_to(target)
        if not result.changed_files:
            logger.info("No tracked files changed; restarting anyway.")
        self.state.last_seen = target
        self.state.pending = None
        return LoopState.RESTARTING

    def _restart(self) -> LoopState:
        self._observe_child()
        child = self.state.current_child
        if child is not None:
            if child.alive:
                self.supervisor.terminate(child, self.config.grace_period)
            self.state.current_child = None

        self.state.current_child = self.supervisor.start(self.spec)
        self.state.last_exit_status = None
        self.state.restarts += 1

        self._wait(self.config.period)
        return LoopState.POLLING

    def _backoff(self) -> LoopState:
        self.state.consecutive_errors += 1
        delay = backoff_delay(
            self.state.consecutive_errors,
            self.config.backoff_base,
            self.config.backoff_max,
        )
        logger.info(
            f"Retrying in {delay:g}s (attempt {self.state.consecutive_errors})."
        )
        self._wait(delay)
        return LoopState.POLLING

    def _observe_child(self, halt: bool = True) -> None:
        """Records a spontaneous exit of the child. Crashed children are not restarted.

        Args:
            halt (bool): Raise `UserCommandFailed` for a non-zero exit when
                `stop_on_failure` is set.
        """
        child = self.state.current_child
        if child is None or self.state.last_exit_status is not None:
            return
        rc = self.supervisor.poll(child)
        if rc is None:
            return

        self.state.last_exit_status = rc
        if rc == 0:
            logger.info(f"Command finished (pid {child.pid}); waiting for changes.")
            return

        logger.warning(
            f"Command exited with code {rc} (pid {child.pid}); waiting for changes."
        )
        if halt and self.config.stop_on_failure:
            raise UserCommandFailed(rc)

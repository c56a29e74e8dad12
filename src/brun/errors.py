"""Error taxonomy for the watch-pull-restart loop.

Only `RemoteUnreachable` is transient: the loop swallows it into a backoff and
retries forever. Every other `BrunError` is fatal and ends the loop after the
running child has been cleaned up.
"""


class BrunError(Exception):
    """Base class for all errors raised by brun components.

    Attributes:
        transient (bool): Whether the loop may retry after this error.
        phase (str | None): The loop phase that failed. Set by the watch loop
            before a fatal error is propagated.
    """

    transient = False

    def __init__(self, message: str):
        super().__init__(message)
        self.phase: str | None = None


class RemoteUnreachable(BrunError):
    """The remote could not be contacted (network, DNS, timeout, 5xx)."""

    transient = True


class RefNotFound(BrunError):
    """The tracked branch does not exist on the remote."""


class NonFastForward(BrunError):
    """Local history diverged from the remote and cannot be fast-forwarded."""


class DirtyWorkingTree(BrunError):
    """Uncommitted local modifications would be overwritten by the sync."""


class SpawnFailed(BrunError):
    """The user command could not be started."""


class RepositoryError(BrunError):
    """The local checkout or the remote is not usable as configured."""


class ConfigError(BrunError):
    """Required configuration is missing or malformed."""


class UserCommandFailed(BrunError):
    """The user command exited with a non-zero status and stop-on-failure is set.

    Attributes:
        returncode (int): The exit status reported by the child.
    """

    def __init__(self, returncode: int):
        super().__init__(f"user command failed (code={returncode})")
        self.returncode = returncode

"""brun: re-run a command whenever a remote git branch advances.

This package provides the watch-pull-restart loop that polls a remote
branch, fast-forwards the local checkout, and supervises the user command
across restarts. The command-line interface lives in `brun.cli` and is not
imported eagerly so it can run as a module.
"""

__version__ = "0.3.0"

from . import (  # noqa: E402
    config,
    constants,
    errors,
    git_wrapper,
    remote,
    supervisor,
    sync,
    watch,
)

__all__ = [
    "config",
    "constants",
    "errors",
    "git_wrapper",
    "remote",
    "supervisor",
    "sync",
    "watch",
]

import argparse
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType

from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import Config, parse_time
from .constants import APP_NAME, PROVIDERS
from .errors import BrunError, RepositoryError
from .git_wrapper import GitRepo
from .remote import build_resolver
from .supervisor import CommandSpec, ProcessSupervisor
from .sync import WorkingTreeSync
from .watch import WatchLoop

logger = logging.getLogger(APP_NAME)
err_console = Console(stderr=True)

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Diagnostics always go to stderr so they never interleave with the
    child's stdout.

    Args:
        verbose (bool): If True, DEBUG messages are emitted as well.
    """
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    logger.addHandler(stream_handler)


def add_file_logging(path: Path, max_bytes: int) -> None:
    """Mirrors diagnostics into a size-bounded, rotating log file.

    Args:
        path (Path): The log file to write.
        max_bytes (int): Size at which the file is rotated.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=5)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
    logger.addHandler(file_handler)


def split_command(argv: list[str]) -> tuple[list[str], list[str]]:
    """Splits arguments at the first `--` into (options, command)."""
    if "--" not in argv:
        return argv, []
    idx = argv.index("--")
    return argv[:idx], argv[idx + 1 :]


def build_parser() -> argparse.ArgumentParser:
    """Creates the argument parser for the options preceding `--`."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        usage=f"{APP_NAME} [options] -- <command> [args...]",
        description=(
            "Listen for changes on the upstream of the current branch and, "
            "when a change is found, pull it and restart the given command."
        ),
    )
    parser.add_argument(
        "-p",
        "--period",
        type=parse_time,
        help="Polling period for upstream changes (e.g. 5, 500ms, 1min; default: 5s)",
    )
    parser.add_argument(
        "--grace",
        type=parse_time,
        help="Time the command gets to exit after SIGTERM before SIGKILL (default: 5s)",
    )
    parser.add_argument("-r", "--remote", help="Remote to watch (default: upstream)")
    parser.add_argument(
        "-b", "--branch", help="Branch to watch (default: current branch)"
    )
    parser.add_argument(
        "--provider",
        choices=PROVIDERS,
        help="How the remote tip is resolved (default: git)",
    )
    parser.add_argument(
        "--stop-on-failure",
        action="store_true",
        default=None,
        help="Stop watching if the command exits with a non-zero status",
    )
    parser.add_argument(
        "--shell",
        action="store_true",
        default=None,
        help="Run the command in a subshell (sh -c)",
    )
    parser.add_argument("--log-file", type=Path, help="Also write diagnostics here")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Layers explicit command-line flags over the loaded configuration."""
    if args.period is not None:
        config.watch.period = args.period
    if args.grace is not None:
        config.watch.grace_period = args.grace
    if args.stop_on_failure is not None:
        config.watch.stop_on_failure = args.stop_on_failure
    if args.shell is not None:
        config.watch.shell = args.shell
    if args.provider is not None:
        config.core.provider = args.provider
    return config


def resolve_target(
    repo: GitRepo, config: Config, args: argparse.Namespace
) -> tuple[str, str]:
    """Determines the (remote, branch) pair to watch.

    The branch defaults to the checked-out branch, the remote to that
    branch's upstream, then to `core.remote_name`.

    Raises:
        RepositoryError: If HEAD is detached and no branch was given.
    """
    branch = args.branch or repo.current_branch()
    if not branch:
        raise RepositoryError(
            "failed to retrieve HEAD branch (detached HEAD?); pass --branch"
        )
    remote = args.remote or repo.upstream_remote(branch) or config.core.remote_name
    logger.debug(f"found remote={remote} branch={branch}")
    return remote, branch


def report_error(error: BrunError) -> None:
    """Prints a fatal error with the phase that produced it."""
    where = f"{error.phase} failed: " if error.phase else ""
    err_console.print(f"[bold red]error:[/bold red] {where}{escape(str(error))}")
    if error.__cause__ is not None:
        logger.debug(f"caused by: {error.__cause__!r}")


def run(argv: list[str] | None = None) -> int:
    """Runs brun and returns the process exit code.

    Args:
        argv (list[str] | None): Arguments without the program name.
            Defaults to `sys.argv[1:]`.

    Returns:
        int: 0 after a signal-initiated shutdown, 1 on a fatal error.
    """
    options, command = split_command(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(options)
    if not command:
        parser.error("the command to run must follow '--'")

    setup_logging(args.verbose)
    logger.debug(f"running with user command: {' '.join(command)}")

    try:
        repo = GitRepo.discover(Path.cwd())
        config = apply_overrides(Config.load(repo.path), args)
        repo.timeout = config.limits.git_timeout
        if args.log_file:
            add_file_logging(args.log_file, config.limits.max_log_size)

        remote, branch = resolve_target(repo, config, args)
        syncer = WorkingTreeSync(repo, remote, branch)
        syncer.ensure_clean()
        resolver = build_resolver(
            config.core.provider, repo, remote, config.limits.git_timeout
        )
    except BrunError as e:
        e.phase = e.phase or "setup"
        report_error(e)
        return 1

    spec = CommandSpec(tuple(command), cwd=repo.path, shell=config.watch.shell)
    loop = WatchLoop(
        resolver,
        syncer,
        ProcessSupervisor(config.watch.grace_period),
        spec,
        branch,
        config.watch,
    )

    def _handle_signal(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}; shutting down.")
        loop.request_stop()

    previous = {
        sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)
    }

    err_console.print(
        f"[bold]{APP_NAME}[/bold]: watching [cyan]{escape(resolver.describe(branch))}"
        f"[/cyan], running [bold]{escape(spec.display())}[/bold]"
    )
    try:
        loop.run()
    except BrunError as e:
        report_error(e)
        return 1
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    err_console.print("Stopped.", style="dim")
    return 0


def main() -> None:
    """Main entry point for the brun CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()

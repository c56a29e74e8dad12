"""Tests for the Command Line Interface (CLI) module."""

import argparse
import logging
import logging.handlers
import os
import signal
import subprocess
import sys
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from brun import cli
from brun.config import Config
from brun.errors import DirtyWorkingTree, RepositoryError
from brun.supervisor import CommandSpec


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Removes handlers installed by setup_logging between tests."""
    yield
    logger = logging.getLogger("brun")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()


@pytest.fixture
def repo(tmp_path: Path, mocker: MagicMock) -> MagicMock:
    """A clean checkout on 'main' tracking 'origin'."""
    repo = MagicMock(path=tmp_path)
    repo.current_branch.return_value = "main"
    repo.upstream_remote.return_value = "origin"
    repo.status_porcelain.return_value = []
    mocker.patch("brun.cli.GitRepo").discover.return_value = repo
    mocker.patch("brun.cli.Config.load", return_value=Config())
    resolver = mocker.patch("brun.cli.build_resolver").return_value
    resolver.describe.return_value = "origin/main"
    return repo


def _args(**overrides: object) -> argparse.Namespace:
    args = cli.build_parser().parse_args([])
    for key, value in overrides.items():
        setattr(args, key, value)
    return args


def test_split_command() -> None:
    """Verifies that everything after the first '--' belongs to the command."""
    assert cli.split_command(["-p", "1", "--", "pytest", "--", "-x"]) == (
        ["-p", "1"],
        ["pytest", "--", "-x"],
    )
    assert cli.split_command(["-v"]) == (["-v"], [])


def test_missing_command_is_a_usage_error() -> None:
    """Verifies that brun refuses to start without a command."""
    with pytest.raises(SystemExit) as exc_info:
        cli.run(["--period", "1"])
    assert exc_info.value.code == 2


def test_invalid_period_is_a_usage_error() -> None:
    """Verifies that malformed durations are rejected by the parser."""
    with pytest.raises(SystemExit) as exc_info:
        cli.run(["--period", "soon", "--", "true"])
    assert exc_info.value.code == 2


def test_apply_overrides() -> None:
    """Verifies that explicit flags win over configuration and absent flags do not."""
    conf = Config()
    conf.watch.stop_on_failure = True

    cli.apply_overrides(conf, _args(period=0.5, provider="github"))

    assert conf.watch.period == 0.5
    assert conf.core.provider == "github"
    assert conf.watch.stop_on_failure is True  # Flag absent, config kept.
    assert conf.watch.grace_period == 5.0


def test_resolve_target_defaults(repo: MagicMock) -> None:
    """Verifies branch and remote inference from the checkout."""
    assert cli.resolve_target(repo, Config(), _args()) == ("origin", "main")

    repo.upstream_remote.return_value = None
    conf = Config()
    conf.core.remote_name = "mirror"
    assert cli.resolve_target(repo, conf, _args()) == ("mirror", "main")

    assert cli.resolve_target(repo, conf, _args(remote="r", branch="b")) == ("r", "b")


def test_resolve_target_detached_head(repo: MagicMock) -> None:
    """Verifies that a detached HEAD without --branch is an error."""
    repo.current_branch.return_value = ""
    with pytest.raises(RepositoryError, match="detached HEAD"):
        cli.resolve_target(repo, Config(), _args())


def test_run_clean_shutdown_returns_zero(
    repo: MagicMock, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies the wiring of a run that ends with a signal-initiated stop."""
    mock_loop_cls = mocker.patch("brun.cli.WatchLoop")
    before = signal.getsignal(signal.SIGTERM)

    code = cli.run(["-p", "2s", "--shell", "--", "make", "test"])

    assert code == 0
    args, _ = mock_loop_cls.call_args
    spec = args[3]
    assert spec == CommandSpec(("make", "test"), cwd=repo.path, shell=True)
    assert args[4] == "main"
    assert args[5].period == 2.0
    mock_loop_cls.return_value.run.assert_called_once()
    assert signal.getsignal(signal.SIGTERM) == before
    assert "watching" in capsys.readouterr().err


def test_run_dirty_checkout_fails_at_setup(
    repo: MagicMock, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that uncommitted changes stop brun before anything runs."""
    repo.status_porcelain.return_value = [" M app.py"]
    mock_loop_cls = mocker.patch("brun.cli.WatchLoop")

    assert cli.run(["--", "pytest"]) == 1

    mock_loop_cls.assert_not_called()
    assert "setup failed" in capsys.readouterr().err


def test_run_fatal_loop_error_returns_one(
    repo: MagicMock, mocker: MagicMock, capsys: pytest.CaptureFixture
) -> None:
    """Verifies that a fatal error inside the loop is reported with its phase."""
    error = DirtyWorkingTree("local files would be overwritten")
    error.phase = "syncing"
    mocker.patch("brun.cli.WatchLoop").return_value.run.side_effect = error

    assert cli.run(["--", "pytest"]) == 1

    assert "syncing failed" in capsys.readouterr().err


def test_log_file_is_rotated(repo: MagicMock, mocker: MagicMock, tmp_path: Path) -> None:
    """Verifies that --log-file attaches a size-bounded rotating handler."""
    mocker.patch("brun.cli.WatchLoop")
    log_file = tmp_path / "logs" / "brun.log"

    cli.run(["--log-file", str(log_file), "--", "true"])

    handlers = logging.getLogger("brun").handlers
    rotating = [h for h in handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert rotating and rotating[0].maxBytes == 5 * 1024 * 1024
    assert log_file.parent.exists()


@pytest.mark.parametrize("module", ["brun", "brun.cli"])
def test_runs_as_module_without_warnings(module: str) -> None:
    """Verifies that `python -m` works without runpy's double-import warning."""
    src = Path(cli.__file__).resolve().parents[1]
    env = {**os.environ, "PYTHONPATH": str(src)}

    res = subprocess.run(
        [sys.executable, "-W", "error::RuntimeWarning", "-m", module, "--version"],
        capture_output=True,
        text=True,
        env=env,
    )

    assert res.returncode == 0, res.stderr
    assert "0.3.0" in res.stdout

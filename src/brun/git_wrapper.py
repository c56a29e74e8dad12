import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME, DEFAULT_GIT_TIMEOUT
from .errors import RepositoryError

logger = logging.getLogger(APP_NAME)


class GitCommandError(RuntimeError):
    """Raised when a git invocation exits non-zero or times out.

    Attributes:
        args_used (list[str]): The git arguments that failed.
        returncode (int | None): The exit status, or None on timeout.
        stderr (str): The captured standard error output.
    """

    def __init__(self, args_used: list[str], returncode: int | None, stderr: str):
        self.args_used = args_used
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"Git error: {self.stderr or f'exit code {returncode}'}")


class GitRepo:
    """A wrapper around the Git command-line interface for a specific checkout.

    Every method maps to one git invocation. Failures surface as
    `GitCommandError` so callers can classify them (transport failure,
    missing ref, diverged history) in their own terms.

    Attributes:
        path (Path): The file system path to the repository root.
        timeout (float): Seconds before a single git command is abandoned.
    """

    def __init__(self, path: Path, timeout: float = DEFAULT_GIT_TIMEOUT):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            timeout (float, optional): Per-command timeout in seconds.

        Raises:
            RepositoryError: If the specified path does not contain a .git entry.
        """
        self.path = path
        self.timeout = timeout
        if not (self.path / ".git").exists():
            raise RepositoryError(f"Not a git repository: {self.path}")

    @classmethod
    def discover(cls, start: Path, timeout: float = DEFAULT_GIT_TIMEOUT) -> "GitRepo":
        """Locates the work tree root containing `start`.

        Args:
            start (Path): Any directory inside the work tree.
            timeout (float, optional): Per-command timeout in seconds.

        Returns:
            GitRepo: A wrapper rooted at the top-level directory.

        Raises:
            RepositoryError: If `start` is not inside a git work tree.
        """
        try:
            res = subprocess.run(
                ["git", "rev-parse", "--show-toplevel"],
                cwd=start,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            raise RepositoryError(
                "you are not in a git repository "
                "(or you are inside the .git directory)"
            ) from e
        except FileNotFoundError as e:
            raise RepositoryError("git executable not found in PATH") from e
        return cls(Path(res.stdout.strip()), timeout=timeout)

    def _run(self, args: list[str]) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitCommandError: If the git command fails or exceeds the timeout.
        """
        logger.debug(f"git {' '.join(args)}")
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
            return res.stdout.strip()
        except subprocess.CalledProcessError as e:
            raise GitCommandError(args, e.returncode, e.stderr or "") from e
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(
                args, None, f"git {args[0]} timed out after {self.timeout}s"
            ) from e

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The branch name, or an empty string on a detached HEAD.
        """
        return self._run(["branch", "--show-current"])

    def upstream_remote(self, branch: str) -> str | None:
        """Returns the remote the given branch tracks, if any.

        Args:
            branch (str): A local branch name.

        Returns:
            str | None: The remote name (e.g. 'origin') or None if unset.
        """
        try:
            return self._run(["config", "--get", f"branch.{branch}.remote"]) or None
        except GitCommandError:
            return None

    def remote_url(self, remote: str) -> str:
        """Returns the fetch URL configured for a remote.

        Args:
            remote (str): The remote name.

        Returns:
            str: The configured URL.
        """
        return self._run(["remote", "get-url", remote])

    def ls_remote(self, remote: str, ref: str) -> str:
        """Lists a single reference on the remote without fetching objects.

        Uses `--exit-code` so a missing ref fails with status 2.

        Args:
            remote (str): The remote name or URL.
            ref (str): The fully qualified reference (e.g. 'refs/heads/main').

        Returns:
            str: Raw `<oid>\\t<ref>` lines.
        """
        return self._run(["ls-remote", "--exit-code", remote, ref])

    def fetch(self, remote: str, branch: str) -> None:
        """Fetches a single branch from the remote into its remote-tracking ref.

        Args:
            remote (str): The remote name.
            branch (str): The branch to fetch.
        """
        self._run(["fetch", "--quiet", remote, branch])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'master').

        Returns:
            Optional[str]:  The full hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitCommandError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def has_commit(self, oid: str) -> bool:
        """Checks whether a commit object exists in the local object store."""
        try:
            self._run(["cat-file", "-e", f"{oid}^{{commit}}"])
            return True
        except GitCommandError:
            return False

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Checks whether `ancestor` is reachable from `descendant`.

        Args:
            ancestor (str): The candidate ancestor commit.
            descendant (str): The candidate descendant commit.

        Returns:
            bool: True if `descendant` can be reached by fast-forwarding.

        Raises:
            GitCommandError: If git fails for a reason other than "not an ancestor".
        """
        try:
            self._run(["merge-base", "--is-ancestor", ancestor, descendant])
            return True
        except GitCommandError as e:
            if e.returncode == 1:
                return False
            raise

    def merge_ff_only(self, target: str) -> None:
        """Advances the current branch to `target`, refusing anything but a fast-forward.

        Args:
            target (str): The commit to advance to.
        """
        self._run(["merge", "--ff-only", "--quiet", target])

    def status_porcelain(self, untracked: bool = True) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Args:
            untracked (bool, optional): Whether untracked files are listed.
                                        Defaults to True.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        cmd = ["status", "--porcelain"]
        if not untracked:
            cmd.append("--untracked-files=no")
        output = self._run(cmd)
        return output.splitlines() if output else []

    def changed_files(self, old: str, new: str) -> list[str]:
        """Lists the paths whose content differs between two commits.

        Args:
            old (str): The base commit.
            new (str): The target commit.

        Returns:
            list[str]: Paths reported by `git diff --name-only old new`.
        """
        output = self._run(["diff", "--name-only", old, new])
        return output.splitlines() if output else []

import logging
from dataclasses import dataclass

from .constants import APP_NAME
from .errors import (
    DirtyWorkingTree,
    NonFastForward,
    RemoteUnreachable,
    RepositoryError,
)
from .git_wrapper import GitCommandError, GitRepo
from .remote import is_network_error

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a successful sync.

    Attributes:
        changed_files (bool): Whether any tracked file changed content.
        previous (str | None): HEAD before the sync.
        current (str): HEAD after the sync.
    """

    changed_files: bool
    previous: str | None
    current: str


class WorkingTreeSync:
    """Fast-forwards the local checkout to a commit resolved on the remote.

    The checkout is treated as a disposable mirror: it is only ever advanced,
    never merged, rebased or reset.

    Attributes:
        repo (GitRepo): The local checkout.
        remote (str): The remote to fetch from.
        branch (str): The branch to fetch.
    """

    def __init__(self, repo: GitRepo, remote: str, branch: str):
        self.repo = repo
        self.remote = remote
        self.branch = branch

    def ensure_clean(self) -> None:
        """Fails if tracked files carry uncommitted modifications.

        Raises:
            DirtyWorkingTree: If `git status` reports modified tracked files.
        """
        if self.repo.status_porcelain(untracked=False):
            raise DirtyWorkingTree(
                "there are uncommitted changes. Run `git commit` or `git stash` "
                "to save the changes and try again."
            )

    def sync_to(self, target: str) -> SyncResult:
        """Brings HEAD to `target`. Safe to call redundantly.

        Args:
            target (str): The commit resolved on the remote.

        Returns:
            SyncResult: Whether files changed, plus the old and new HEAD.

        Raises:
            DirtyWorkingTree: If local modifications would be overwritten.
            NonFastForward: If HEAD is not an ancestor of `target`.
            RemoteUnreachable: If the fetch fails for transport reasons.
        """
        previous = self.repo.rev_parse("HEAD")
        if previous == target:
            logger.debug(f"HEAD already at {target[:10]}; nothing to sync.")
            return SyncResult(changed_files=False, previous=previous, current=target)

        self.ensure_clean()

        try:
            self.repo.fetch(self.remote, self.branch)
        except GitCommandError as e:
            if e.returncode is None or is_network_error(e.stderr):
                raise RemoteUnreachable(
                    f"fetch from '{self.remote}' failed: {e.stderr}"
                ) from e
            raise RepositoryError(f"fetch from '{self.remote}' failed: {e.stderr}") from e

        if not self.repo.has_commit(target):
            # The remote moved again (or was rewound) between resolve and fetch.
            raise RemoteUnreachable(
                f"commit {target[:10]} not available after fetching {self.branch}"
            )

        try:
            fast_forward = previous is None or self.repo.is_ancestor(previous, target)
        except GitCommandError as e:
            raise RepositoryError(f"could not compare history: {e.stderr}") from e
        if not fast_forward:
            raise NonFastForward(
                f"local history diverged from {self.remote}/{self.branch}: "
                f"{previous[:10]} is not an ancestor of {target[:10]}"
            )

        try:
            self.repo.merge_ff_only(target)
        except GitCommandError as e:
            if "would be overwritten" in e.stderr:
                raise DirtyWorkingTree(
                    f"local files would be overwritten by the update: {e.stderr}"
                ) from e
            if "not possible to fast-forward" in e.stderr.lower():
                raise NonFastForward(e.stderr) from e
            raise RepositoryError(f"fast-forward to {target[:10]} failed: {e.stderr}") from e

        changed = bool(self.repo.changed_files(previous, target)) if previous else True
        logger.info(
            f"Pulled {self.remote}/{self.branch}: "
            f"{(previous or 'null')[:10]} -> {target[:10]}"
        )
        return SyncResult(changed_files=changed, previous=previous, current=target)

import logging
import os
import re

import requests

from .constants import (
    APP_NAME,
    GITHUB_API_URL,
    GITHUB_API_VERSION,
    MISCONFIG_ERROR_MARKERS,
    NETWORK_ERROR_MARKERS,
    TOKEN_ENV_VARS,
)
from .errors import (
    ConfigError,
    RefNotFound,
    RemoteUnreachable,
    RepositoryError,
)
from .git_wrapper import GitCommandError, GitRepo

logger = logging.getLogger(APP_NAME)


def is_network_error(message: str) -> bool:
    """Tells whether a git error message describes a transport failure."""
    lowered = message.lower()
    if any(marker in lowered for marker in MISCONFIG_ERROR_MARKERS):
        return False
    return any(marker in lowered for marker in NETWORK_ERROR_MARKERS)


def parse_remote_url(url: str) -> tuple[str, str]:
    """Extracts the owner and repository name from a git remote URL.

    Supports scp-like SSH (`git@github.com:owner/repo.git`) and URL forms
    (`https://github.com/owner/repo`, `ssh://git@github.com/owner/repo.git`).

    Args:
        url (str): The remote URL as reported by `git remote get-url`.

    Returns:
        tuple[str, str]: The (owner, repo) pair, without a `.git` suffix.

    Raises:
        ConfigError: If the URL does not name an owner and a repository.
    """
    url = url.strip().rstrip("/")
    if "://" in url:
        path = url.split("://", 1)[1].partition("/")[2]
    elif ":" in url:
        path = url.split(":", 1)[1]
    else:
        path = ""

    match = re.match(r"^/?([^/]+)/([^/]+?)(?:\.git)?$", path)
    if not match:
        raise ConfigError(f"could not get owner/repo from remote url: {url}")
    return match.group(1), match.group(2)


def find_token() -> str | None:
    """Returns the first GitHub token found in the environment."""
    for name in TOKEN_ENV_VARS:
        if token := os.environ.get(name):
            return token
    return None


class RefResolver:
    """Base class for strategies that read the tip of a remote branch.

    Implementations must not touch the working tree or local refs.
    """

    def resolve(self, branch: str) -> str:
        """Returns the commit the branch currently points to on the remote.

        Raises:
            RemoteUnreachable: If the remote cannot be contacted.
            RefNotFound: If the branch does not exist on the remote.
        """
        raise NotImplementedError

    def describe(self, branch: str) -> str:
        """Returns a human-readable name for the tracked reference."""
        return branch


class GitRefResolver(RefResolver):
    """Resolves the remote tip with `git ls-remote`.

    Attributes:
        repo (GitRepo): The local checkout, used only as git's working directory.
        remote (str): The remote name or URL to query.
    """

    def __init__(self, repo: GitRepo, remote: str):
        self.repo = repo
        self.remote = remote

    def describe(self, branch: str) -> str:
        return f"{self.remote}/{branch}"

    def resolve(self, branch: str) -> str:
        ref = f"refs/heads/{branch}"
        try:
            output = self.repo.ls_remote(self.remote, ref)
        except GitCommandError as e:
            if e.returncode == 2:
                raise RefNotFound(
                    f"branch '{branch}' not found on remote '{self.remote}'"
                ) from e
            if e.returncode is None or is_network_error(e.stderr):
                raise RemoteUnreachable(
                    f"could not reach remote '{self.remote}': {e.stderr}"
                ) from e
            raise RepositoryError(
                f"ls-remote against '{self.remote}' failed: {e.stderr}"
            ) from e

        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == ref:
                return parts[0]
        raise RefNotFound(f"branch '{branch}' not found on remote '{self.remote}'")


class GithubRefResolver(RefResolver):
    """Resolves the remote tip through the GitHub REST API.

    Attributes:
        owner (str): The account that owns the repository.
        repo (str): The repository name.
        timeout (float): Seconds before a request is abandoned.
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        session: requests.Session | None = None,
        timeout: float = 15.0,
        api_url: str = GITHUB_API_URL,
    ):
        self.owner = owner
        self.repo = repo
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            }
        )

    def describe(self, branch: str) -> str:
        return f"{self.owner}/{self.repo}/{branch}"

    def resolve(self, branch: str) -> str:
        url = f"{self.api_url}/repos/{self.owner}/{self.repo}/commits"
        logger.debug(f"GET {url} sha={branch}")
        try:
            resp = self.session.get(
                url, params={"sha": branch, "per_page": 1}, timeout=self.timeout
            )
        except (
            requests.ConnectionError,
            requests.Timeout,
            requests.exceptions.ChunkedEncodingError,
        ) as e:
            raise RemoteUnreachable(f"could not reach GitHub API: {e}") from e
        except requests.RequestException as e:
            raise RepositoryError(f"GitHub API request failed: {e}") from e

        if resp.status_code in (404, 422):
            raise RefNotFound(
                f"branch '{branch}' not found in {self.owner}/{self.repo}"
            )
        if resp.status_code == 429 or resp.status_code >= 500:
            raise RemoteUnreachable(
                f"GitHub API unavailable (HTTP {resp.status_code})"
            )
        if resp.status_code >= 400:
            raise RepositoryError(
                f"GitHub API rejected the request (HTTP {resp.status_code}): "
                f"{resp.text.strip()}"
            )

        try:
            commits = resp.json()
        except ValueError as e:
            raise RepositoryError(f"GitHub API returned invalid JSON: {e}") from e
        if not commits:
            raise RefNotFound(f"remote branch '{branch}' has no commits")
        try:
            return commits[0]["sha"]
        except (KeyError, IndexError, TypeError) as e:
            raise RepositoryError(
                f"unexpected GitHub API payload for branch '{branch}'"
            ) from e


def build_resolver(
    provider: str, repo: GitRepo, remote: str, timeout: float
) -> RefResolver:
    """Creates the resolver for the configured provider.

    Args:
        provider (str): Either 'git' or 'github'.
        repo (GitRepo): The local checkout.
        remote (str): The remote name tracked by the loop.
        timeout (float): Network timeout in seconds (GitHub provider only).

    Returns:
        RefResolver: A ready-to-use resolver.

    Raises:
        ConfigError: If the provider is unknown, the token is missing,
            or the remote URL cannot be parsed.
    """
    if provider == "git":
        return GitRefResolver(repo, remote)
    if provider == "github":
        token = find_token()
        if not token:
            raise ConfigError(
                "you must set the GH_TOKEN or GITHUB_TOKEN environment variable"
            )
        try:
            url = repo.remote_url(remote)
        except GitCommandError as e:
            raise RepositoryError(f"failed to get remote url: {e.stderr}") from e
        owner, name = parse_remote_url(url)
        return GithubRefResolver(owner, name, token, timeout=timeout)
    raise ConfigError(f"unknown provider '{provider}'")

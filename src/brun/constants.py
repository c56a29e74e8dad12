from pathlib import Path

"""Global constants and configuration path definitions for brun.

This module defines the configuration file locations, application identifiers,
and the default timings used by the watch loop.
"""

# --- Identity ---
APP_NAME = "brun"
"""str: The human-readable application name (also the logger name)."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/brun"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The global configuration file path."""

LOCAL_CONFIG_NAME = "brun.toml"
"""str: Per-checkout configuration file, looked up at the repository root."""

PYPROJECT_SECTION = "tool.brun"
"""str: Section of pyproject.toml consulted when no brun.toml exists."""

# --- Watch Loop Defaults ---
DEFAULT_PERIOD = 5.0
"""float: Seconds between two polls of the remote tip."""

DEFAULT_GRACE_PERIOD = 5.0
"""float: Seconds a child gets to exit after SIGTERM before it is killed."""

DEFAULT_BACKOFF_BASE = 1.0
"""float: First retry delay after a transient remote failure."""

DEFAULT_BACKOFF_MAX = 60.0
"""float: Upper bound for the exponential retry delay."""

DEFAULT_GIT_TIMEOUT = 30.0
"""float: Seconds before a single git invocation is abandoned."""

# --- Remote Providers ---
PROVIDERS = ("git", "github")
"""tuple[str, ...]: Supported strategies for resolving the remote tip."""

GITHUB_API_URL = "https://api.github.com"
"""str: Base URL of the GitHub REST API."""

GITHUB_API_VERSION = "2022-11-28"
"""str: Value sent in the X-GitHub-Api-Version header."""

TOKEN_ENV_VARS = ("GH_TOKEN", "GITHUB_TOKEN")
"""tuple[str, ...]: Environment variables searched, in order, for a GitHub token."""

# --- Git Output Classification ---
NETWORK_ERROR_MARKERS = [
    "could not resolve host",
    "could not read from remote repository",
    "unable to access",
    "connection timed out",
    "connection refused",
    "operation timed out",
    "network is unreachable",
    "the remote end hung up unexpectedly",
    "early eof",
    "ssh: connect to host",
    "timed out",
]
"""
list[str]: Lower-cased fragments of git stderr that indicate a transient
transport failure rather than a misconfiguration.
"""

MISCONFIG_ERROR_MARKERS = [
    "does not appear to be a git repository",
    "repository not found",
    "authentication failed",
    "permission denied",
]
"""
list[str]: Lower-cased fragments of git stderr that mark the remote as
misconfigured or inaccessible. Checked before NETWORK_ERROR_MARKERS because
git appends "Could not read from remote repository" to these too.
"""

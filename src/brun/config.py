import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_GRACE_PERIOD,
    DEFAULT_PERIOD,
    LOCAL_CONFIG_NAME,
    PROVIDERS,
    PYPROJECT_SECTION,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '500ms', '30s', '2min') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Invalid time format '{value}'")
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)?s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2) or "s"
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class CoreConfig:
    """Remote selection settings.

    Attributes:
        remote_name (str): Remote used when the branch has no upstream.
        provider (str): How the remote tip is resolved ('git' or 'github').
    """

    remote_name: str = "origin"
    provider: str = "git"


@dataclass
class WatchConfig:
    """Watch loop timings and failure policy.

    Attributes:
        period (float): Seconds between polls.
        grace_period (float): Seconds a child gets to exit after SIGTERM.
        backoff_base (float): First retry delay after a transient failure.
        backoff_max (float): Cap on the exponential retry delay.
        stop_on_failure (bool): Halt when the command exits non-zero.
        shell (bool): Run the command through `sh -c`.
    """

    period: float = DEFAULT_PERIOD
    grace_period: float = DEFAULT_GRACE_PERIOD
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    stop_on_failure: bool = False
    shell: bool = False


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the log file before rotation.
        git_timeout (float): Seconds before a single git command is abandoned.
    """

    max_log_size: int = 5 * 1024 * 1024
    git_timeout: float = DEFAULT_GIT_TIMEOUT


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Remote selection settings.
        watch (WatchConfig): Loop settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def load(cls, repo_path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            repo_path (Path | None): The checkout root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if repo_path:
            local_toml = repo_path / LOCAL_CONFIG_NAME
            pyproject = repo_path / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section=PYPROJECT_SECTION)

        return instance

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.brun').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
                if self.core.provider not in PROVIDERS:
                    logger.warning(
                        f"Config error in [core].provider: unknown provider "
                        f"'{self.core.provider}'. Falling back to default."
                    )
                    self.core.provider = CoreConfig.provider
            if "watch" in data:
                self.watch = self._update_dataclass("watch", self.watch, data["watch"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in (
                    "period",
                    "grace_period",
                    "backoff_base",
                    "backoff_max",
                    "git_timeout",
                ):
                    filtered_updates[k] = parse_time(v)
                elif k in ("stop_on_failure", "shell"):
                    if not isinstance(v, bool):
                        raise ValueError(f"Expected true/false, got '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = str(v)
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    HISTORY_FILE,
    LOG_FILE,
    MAPPINGS_FILE,
    REPO_DIR,
)
from .urls import embed_credential, strip_credentials

logger = logging.getLogger(APP_NAME)


class ConfigError(ValueError):
    """Raised when configuration or a mapping path is unusable."""


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


def parse_time(value: int | str) -> int:
    """Converts human-readable time strings (e.g., '2m', '90s') to seconds."""
    if isinstance(value, int):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return int(num * multiplier[unit])


def parse_hours(value: int | str) -> int:
    """Converts an interval ('6', '6h', 6) to a whole number of hours."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+)\s*(h|hr|hour)?s?$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid hour interval '{value}'")
    return int(match.group(1))


# (section, key) -> environment variable
ENV_OVERRIDES = {
    ("repo", "url"): "GIT_REPO_URL",
    ("repo", "token"): "GITHUB_TOKEN",
    ("repo", "branch"): "GIT_BRANCH",
    ("repo", "path"): "GIT_BACKUP_REPO_DIR",
    ("author", "name"): "GIT_USER_NAME",
    ("author", "email"): "GIT_USER_EMAIL",
    ("schedule", "interval_hours"): "BACKUP_INTERVAL_HOURS",
    ("paths", "mappings_file"): "CONFIG_FILE",
    ("paths", "history_file"): "HISTORY_FILE",
    ("paths", "config_backup_path"): "CONFIG_BACKUP_PATH",
    ("legacy", "source_dir"): "BACKUP_DIR",
    ("legacy", "repo_subdir"): "REPO_SUBDIR",
}


@dataclass
class RepoConfig:
    """Target repository settings.

    Attributes:
        url (str): The repository URL as configured (no credential).
        token (str): Access token embedded into HTTPS URLs for transport.
        branch (str): The branch every mapping commits to.
        path (Path): The local working copy, rebuilt every cycle.
    """

    url: str = ""
    token: str = field(default="", repr=False)
    branch: str = "main"
    path: Path = REPO_DIR


@dataclass
class AuthorConfig:
    """Commit identity written into the working copy's local git config."""

    name: str = "Git Backup Bot"
    email: str = "gitbackup@example.com"


@dataclass
class ScheduleConfig:
    """Scheduling settings.

    Attributes:
        interval_hours (int): Cycles fire at minute 0 of every Nth hour.
    """

    interval_hours: int = 6


@dataclass
class CommitConfig:
    """AI commit tool settings.

    Attributes:
        tool (str): The executable invoked to write commit messages.
        timeout (int): Seconds before a commit tool run is abandoned.
        describe_timeout (int): Seconds allowed for a README description.
    """

    tool: str = "copilot"
    timeout: int = 120
    describe_timeout: int = 60


@dataclass
class PathsConfig:
    """Locations of the durable stores.

    Attributes:
        mappings_file (Path): The mapping store (mappings and settings).
        history_file (Path): The history store.
        log_file (Path): The daemon log file.
        config_backup_path (str): Repository-relative path tried first when
                                  recovering the mapping store from the clone.
    """

    mappings_file: Path = MAPPINGS_FILE
    history_file: Path = HISTORY_FILE
    log_file: Path = LOG_FILE
    config_backup_path: str = ""


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class LegacyConfig:
    """Single-mapping defaults used when no mapping store exists yet."""

    source_dir: str = "/backup"
    repo_subdir: str = ""


@dataclass
class GlobalConfig:
    """Process-wide configuration aggregator.

    Read once at startup. Only `global_ignore_patterns` changes afterwards,
    through `with_settings`, once per cycle.

    Attributes:
        repo (RepoConfig): Target repository settings.
        author (AuthorConfig): Commit identity.
        schedule (ScheduleConfig): Backup interval.
        commit (CommitConfig): AI commit tool settings.
        paths (PathsConfig): Store locations.
        limits (LimitsConfig): Resource limits.
        legacy (LegacyConfig): Legacy single-mapping defaults.
        global_ignore_patterns (list[str]): Per-cycle view of the settings.
    """

    repo: RepoConfig = field(default_factory=RepoConfig)
    author: AuthorConfig = field(default_factory=AuthorConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    legacy: LegacyConfig = field(default_factory=LegacyConfig)
    global_ignore_patterns: list[str] = field(default_factory=list)

    @classmethod
    def load(
        cls, path: Path | None = None, environ: dict[str, str] | None = None
    ) -> "GlobalConfig":
        """Loads and merges configuration from defaults, a TOML file and the environment.

        Args:
            path (Path | None): The TOML file. Defaults to $GIT_BACKUP_CONFIG
                                or ~/.config/git-backup/config.toml.
            environ (dict[str, str] | None): Environment to read overrides from.
                                             Defaults to os.environ.

        Returns:
            GlobalConfig: The fully merged configuration object.
        """
        env = os.environ if environ is None else environ
        instance = cls()

        if path is None:
            path = CONFIG_FILE
            if "GIT_BACKUP_CONFIG" in env:
                path = Path(env["GIT_BACKUP_CONFIG"])
        if path.exists():
            instance._merge_from_file(path)

        overrides: dict[str, dict[str, Any]] = {}
        for (section, key), var in ENV_OVERRIDES.items():
            if var in env:
                overrides.setdefault(section, {})[key] = env[var]
        instance._merge(overrides)

        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance."""
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
            self._merge(data)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    def _merge(self, data: dict[str, Any]) -> None:
        for section_name, updates in data.items():
            current = getattr(self, section_name, None)
            if not hasattr(current, "__dataclass_fields__") or not isinstance(
                updates, dict
            ):
                logger.warning(f"Unknown config section [{section_name}]. Ignoring.")
                continue
            setattr(
                self,
                section_name,
                self._update_dataclass(section_name, current, updates),
            )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["timeout", "describe_timeout"]:
                    filtered_updates[k] = parse_time(v)
                elif k == "interval_hours":
                    filtered_updates[k] = parse_hours(v)
                elif k in ["path", "mappings_file", "history_file", "log_file"]:
                    filtered_updates[k] = Path(v).expanduser()
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    def validate(self) -> None:
        """Checks the settings a backup cycle cannot run without.

        Raises:
            ConfigError: If the repository URL is missing or the interval is invalid.
        """
        if not self.repo.url:
            raise ConfigError("GIT_REPO_URL environment variable is required")
        if self.schedule.interval_hours < 1:
            raise ConfigError(
                f"Backup interval must be at least 1 hour, got {self.schedule.interval_hours}"
            )

    def authenticated_url(self) -> str:
        """Builds the credential-bearing URL for a single clone or push."""
        return embed_credential(self.repo.url, self.repo.token)

    def safe_repo_url(self) -> str:
        """The repository URL with any embedded credential removed."""
        return strip_credentials(self.repo.url)

    def with_settings(self, global_ignore_patterns: list[str]) -> "GlobalConfig":
        """Returns a per-cycle copy carrying the current global ignore patterns."""
        return replace(self, global_ignore_patterns=list(global_ignore_patterns))

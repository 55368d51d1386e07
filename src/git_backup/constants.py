import os
from pathlib import Path

"""Global constants and default path definitions for git-backup.

This module defines the filesystem layout (adhering to XDG standards where
applicable), application identifiers, and the fixed limits and markers used
across the application. Every path here is only a default; the runtime
values live on `GlobalConfig`.
"""

# --- Identity ---
APP_NAME = "git-backup"
"""str: The human-readable application name, also the logger name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-backup"
"""Path: The directory for runtime state data (stores, logs, working copy)."""

REPO_DIR = STATE_DIR / "repo"
"""Path: The default location of the working copy, rebuilt every cycle."""

MAPPINGS_FILE = STATE_DIR / "config.json"
"""Path: The default mapping store (mappings and settings)."""

HISTORY_FILE = STATE_DIR / "history.json"
"""Path: The default history store."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

LOCK_FILE = STATE_DIR / "backup.lock"
"""Path: The lock file shared by every process that runs backup cycles."""

CONFIG_DIR: Path = Path.home() / ".config/git-backup"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Backup Logic Constants ---
MAX_HISTORY_ENTRIES = 500
"""int: The number of history entries retained; older entries are evicted."""

INVALID_PATH_CHARS = "\"';|"
"""str: Characters rejected in source and target paths."""

MANAGED_IGNORE_HEADER = "# Managed by git-backup"
"""str: First line of every .gitignore written by git-backup."""

ALWAYS_EXCLUDE = [".git", "/.gitignore"]
"""list[str]: rsync exclusions applied to every mapping."""

COMMIT_PROMPT = "git commit with message summarizing these changes"
"""str: Instruction given to the AI commit tool."""

COMMIT_TOOL_PERMISSION = "shell(git:*)"
"""str: The only tool permission granted to the AI commit tool."""

DESCRIBE_TOOL_PERMISSION = "shell(ls:*,cat:*,head:*,file:*)"
"""str: Read-only tool permissions granted when describing a directory."""

METADATA_COMMIT_MESSAGE = "Update git-backup metadata"
"""str: Message of the housekeeping commit (README, config mirror)."""

LEGACY_MAPPING_ID = "legacy"
"""str: Identifier of the mapping synthesized when no store exists yet."""

README_FILE = "README.md"
README_START_MARKER = "<!-- git-backup-start -->"
README_END_MARKER = "<!-- git-backup-end -->"

"""Data records shared by the stores, the synchronizer and the orchestrator."""

import datetime
from dataclasses import asdict, dataclass, field
from typing import Any

SUCCESS = "success"
NO_CHANGE = "no_change"
ERROR = "error"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a 'Z' suffix."""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class Mapping:
    """A single source directory -> repository subdirectory backup rule.

    Attributes:
        id (str): Opaque identifier, fixed at creation.
        name (str): Display label, also used in fallback commit messages.
        source_dir (str): Absolute local path that gets mirrored.
        repo_subdir (str): Path relative to the repository root ("" = root).
        enabled (bool): Whether full cycles include this mapping.
        ignore_patterns (list[str]): Mapping-scoped rsync/gitignore patterns.
        readme_section (bool): Opt-in to a generated README section.
    """

    id: str
    name: str
    source_dir: str
    repo_subdir: str = ""
    enabled: bool = True
    ignore_patterns: list[str] = field(default_factory=list)
    readme_section: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mapping":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            source_dir=str(data["source_dir"]),
            repo_subdir=str(data.get("repo_subdir") or ""),
            enabled=bool(data.get("enabled", True)),
            ignore_patterns=list(data.get("ignore_patterns") or []),
            readme_section=bool(data.get("readme_section", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Settings:
    """Mutable global settings, re-read at the start of every cycle.

    Attributes:
        global_ignore_patterns (list[str]): Applied to every mapping.
        config_backup_path (str): Repository path the mapping store is
                                  mirrored to ("" disables the mirror).
    """

    global_ignore_patterns: list[str] = field(default_factory=list)
    config_backup_path: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        return cls(
            global_ignore_patterns=list(data.get("global_ignore_patterns") or []),
            config_backup_path=str(data.get("config_backup_path") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HistoryEntry:
    """One mapping's successful commit within one cycle."""

    timestamp: str
    mapping_id: str
    mapping_name: str
    commit_sha: str
    commit_message: str
    files_changed: int
    commit_url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp=data["timestamp"],
            mapping_id=data["mapping_id"],
            mapping_name=data.get("mapping_name", ""),
            commit_sha=data["commit_sha"],
            commit_message=data.get("commit_message", ""),
            files_changed=int(data.get("files_changed", 0)),
            commit_url=data.get("commit_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommitResult:
    """How a commit was made.

    Attributes:
        via (str): "ai" when the AI tool committed, "fallback" otherwise.
        message (str): The message recorded in the repository.
    """

    via: str
    message: str


@dataclass(frozen=True)
class SyncOutcome:
    """Result of a mapping sync that produced a commit."""

    commit_sha: str
    commit_message: str
    files_changed: int
    via: str = "fallback"


@dataclass
class CycleResult:
    """One mapping's outcome within a cycle: success, no_change or error."""

    mapping_id: str
    mapping_name: str
    status: str
    entry: HistoryEntry | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != ERROR

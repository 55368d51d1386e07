"""Durable store for backup mappings and global settings."""

import logging
import secrets
import shutil
from pathlib import Path
from typing import Any

from .config import ConfigError
from .constants import APP_NAME, INVALID_PATH_CHARS, LEGACY_MAPPING_ID
from .models import Mapping, Settings
from .storage import read_json, write_json_atomic

logger = logging.getLogger(APP_NAME)

UPDATABLE_FIELDS = (
    "name",
    "source_dir",
    "repo_subdir",
    "enabled",
    "ignore_patterns",
    "readme_section",
)


class DuplicateSubdirError(ValueError):
    """Raised when two mappings would target the same repository subdirectory."""


class MappingNotFoundError(LookupError):
    """Raised when a mapping id is unknown (or, for a cycle, disabled)."""


def validate_source_dir(source_dir: str) -> None:
    """Rejects source paths containing characters a shell could interpret.

    Raises:
        ConfigError: If `source_dir` contains any of `" ' ; |`.
    """
    if any(c in source_dir for c in INVALID_PATH_CHARS):
        raise ConfigError(f"Invalid path: {source_dir}")


def normalize_subdir(repo_subdir: str | None) -> str:
    """The repository subdirectory without leading or trailing slashes."""
    return (repo_subdir or "").strip("/")


class MappingStore:
    """JSON-backed CRUD for mappings and settings.

    The file holds `{"mappings": [...], "settings": {...}}`. Every mutation
    re-reads the file, applies the change and writes it back atomically, so
    it is durable immediately and a concurrent reader sees either the old or
    the new document.

    When the file does not exist, a single mapping is synthesized from the
    legacy `BACKUP_DIR` / `REPO_SUBDIR` defaults.

    Attributes:
        path (Path): The store file.
    """

    def __init__(
        self,
        path: Path,
        legacy_source_dir: str = "/backup",
        legacy_repo_subdir: str = "",
    ):
        self.path = path
        self.legacy_source_dir = legacy_source_dir
        self.legacy_repo_subdir = legacy_repo_subdir

    def exists(self) -> bool:
        """Whether a mapping configuration has been persisted locally."""
        return self.path.exists()

    def _load(self) -> dict[str, Any]:
        data = read_json(self.path, None)
        if data is None:
            return {
                "mappings": [self._legacy_mapping().to_dict()],
                "settings": {},
            }
        data.setdefault("mappings", [])
        data.setdefault("settings", {})
        return data

    def _save(self, data: dict[str, Any]) -> None:
        write_json_atomic(self.path, data)

    def _legacy_mapping(self) -> Mapping:
        return Mapping(
            id=LEGACY_MAPPING_ID,
            name=self.legacy_repo_subdir or "Default",
            source_dir=self.legacy_source_dir,
            repo_subdir=normalize_subdir(self.legacy_repo_subdir),
        )

    def list_mappings(self) -> list[Mapping]:
        """Returns every mapping, enabled or not, in stored order."""
        return [Mapping.from_dict(m) for m in self._load()["mappings"]]

    def get_mapping(self, mapping_id: str) -> Mapping:
        """Fetches one mapping by id.

        Raises:
            MappingNotFoundError: If the id is unknown.
        """
        for mapping in self.list_mappings():
            if mapping.id == mapping_id:
                return mapping
        raise MappingNotFoundError(f"Mapping {mapping_id} not found")

    def add_mapping(
        self,
        name: str,
        source_dir: str,
        repo_subdir: str = "",
        ignore_patterns: list[str] | None = None,
        readme_section: bool = False,
    ) -> Mapping:
        """Creates a new, enabled mapping with a freshly generated id.

        Raises:
            DuplicateSubdirError: If another mapping targets `repo_subdir`.
            ConfigError: If `source_dir` contains forbidden characters.
        """
        validate_source_dir(source_dir)
        repo_subdir = normalize_subdir(repo_subdir)
        data = self._load()
        mappings = data["mappings"]

        taken_subdirs = {normalize_subdir(m.get("repo_subdir")) for m in mappings}
        if repo_subdir in taken_subdirs:
            raise DuplicateSubdirError(
                f'A mapping with repo_subdir "{repo_subdir}" already exists'
            )

        taken = {m["id"] for m in mappings}
        mapping_id = secrets.token_hex(6)
        while mapping_id in taken:
            mapping_id = secrets.token_hex(6)

        mapping = Mapping(
            id=mapping_id,
            name=name,
            source_dir=source_dir,
            repo_subdir=repo_subdir,
            ignore_patterns=list(ignore_patterns or []),
            readme_section=readme_section,
        )
        mappings.append(mapping.to_dict())
        self._save(data)
        logger.info(f"ADDED {name}: {source_dir} -> {repo_subdir or '.'}")
        return mapping

    def update_mapping(self, mapping_id: str, **updates: Any) -> Mapping:
        """Applies a partial update. `id` and unknown keys are ignored.

        Raises:
            MappingNotFoundError: If the id is unknown.
            DuplicateSubdirError: If the new `repo_subdir` is already taken.
            ConfigError: If the new `source_dir` contains forbidden characters.
        """
        data = self._load()
        mappings = data["mappings"]
        idx = next(
            (i for i, m in enumerate(mappings) if m["id"] == mapping_id), None
        )
        if idx is None:
            raise MappingNotFoundError(f"Mapping {mapping_id} not found")

        current = mappings[idx]
        new_subdir = updates.get("repo_subdir")
        if new_subdir is not None:
            new_subdir = updates["repo_subdir"] = normalize_subdir(new_subdir)
        if (
            new_subdir is not None
            and new_subdir != normalize_subdir(current.get("repo_subdir"))
            and any(
                m["id"] != mapping_id
                and normalize_subdir(m.get("repo_subdir")) == new_subdir
                for m in mappings
            )
        ):
            raise DuplicateSubdirError(
                f'A mapping with repo_subdir "{new_subdir}" already exists'
            )
        if updates.get("source_dir") is not None:
            validate_source_dir(updates["source_dir"])

        for key in UPDATABLE_FIELDS:
            if updates.get(key) is not None:
                current[key] = updates[key]

        mappings[idx] = Mapping.from_dict(current).to_dict()
        self._save(data)
        return Mapping.from_dict(mappings[idx])

    def delete_mapping(self, mapping_id: str) -> None:
        """Removes a mapping.

        Raises:
            MappingNotFoundError: If the id is unknown.
        """
        data = self._load()
        remaining = [m for m in data["mappings"] if m["id"] != mapping_id]
        if len(remaining) == len(data["mappings"]):
            raise MappingNotFoundError(f"Mapping {mapping_id} not found")
        data["mappings"] = remaining
        self._save(data)
        logger.info(f"REMOVED mapping {mapping_id}")

    def get_settings(self) -> Settings:
        return Settings.from_dict(self._load()["settings"])

    def update_settings(self, **updates: Any) -> Settings:
        """Merges the given keys into the stored settings.

        Raises:
            ValueError: If a key is not a known setting.
        """
        valid_keys = Settings.__dataclass_fields__.keys()
        invalid_keys = set(updates) - set(valid_keys)
        if invalid_keys:
            raise ValueError(f"Unknown settings: {', '.join(sorted(invalid_keys))}")

        data = self._load()
        merged = {**data["settings"], **updates}
        data["settings"] = Settings.from_dict(merged).to_dict()
        self._save(data)
        return Settings.from_dict(data["settings"])

    def import_file(self, source: Path) -> bool:
        """Replaces the store with a mapping configuration found elsewhere.

        Args:
            source (Path): A JSON document with a `mappings` list.

        Returns:
            bool: True if the file was accepted and copied into place.
        """
        try:
            data = read_json(source, None)
        except (OSError, ValueError) as e:
            logger.debug(f"Cannot import {source}: {e}")
            return False
        if not isinstance(data, dict) or not isinstance(data.get("mappings"), list):
            return False

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.path.with_name(self.path.name + ".tmp")
        shutil.copyfile(source, tmp_file)
        tmp_file.replace(self.path)
        return True

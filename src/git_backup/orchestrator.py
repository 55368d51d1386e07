import fcntl
import json
import logging
import os
import shutil
import threading
from collections.abc import Callable
from pathlib import Path
from typing import IO

from .commit import CommitMessageGenerator, CopilotGenerator
from .config import GlobalConfig
from .constants import APP_NAME, METADATA_COMMIT_MESSAGE, README_FILE
from .git_wrapper import GitRepo
from .history import HistoryStore
from .mappings import MappingNotFoundError, MappingStore
from .models import (
    ERROR,
    NO_CHANGE,
    SUCCESS,
    CycleResult,
    HistoryEntry,
    Mapping,
    Settings,
    utc_timestamp,
)
from .readme import update_readme
from .repository import prepare_repo
from .sync import FileSyncer, RsyncSyncer, sync_mapping
from .urls import build_commit_url

logger = logging.getLogger(APP_NAME)


class BackupInProgressError(RuntimeError):
    """Raised when a cycle is requested while another one is running."""


def _acquire_file_lock(lock_path: Path) -> IO[str] | None:
    # Non-blocking exclusive lock; None when another process holds it.
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # Truncated only once locked; a failed attempt keeps the holder's PID.
    f = open(lock_path, "a")
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        f.close()
        return None
    except OSError:
        f.close()
        raise
    f.seek(0)
    f.truncate()
    f.write(str(os.getpid()))
    f.flush()
    return f


class BackupGuard:
    """The single mutual-exclusion flag for backup cycles.

    Within a process a non-blocking `threading.Lock` decides; when a lock
    file is configured an `flock` on it also excludes other processes that
    share the same working copy (the daemon and a one-off CLI run).

    Attributes:
        lock_path (Path | None): Optional cross-process lock file.
    """

    def __init__(self, lock_path: Path | None = None):
        self.lock_path = lock_path
        self._lock = threading.Lock()
        self._lock_file: IO[str] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def acquire(self) -> bool:
        """Enters the Running state. Returns False (and changes nothing) if busy.

        Raises:
            OSError: If the lock file cannot be created; the guard stays Idle.
        """
        if not self._lock.acquire(blocking=False):
            return False
        if self.lock_path is not None:
            try:
                self._lock_file = _acquire_file_lock(self.lock_path)
            except OSError:
                self._lock.release()
                raise
            if self._lock_file is None:
                self._lock.release()
                return False
        self._running = True
        return True

    def release(self) -> None:
        """Returns to Idle. Safe to call on every exit path."""
        if not self._running:
            return
        self._running = False
        if self._lock_file is not None:
            try:
                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
            finally:
                self._lock_file.close()
                self._lock_file = None
        self._lock.release()

    @staticmethod
    def probe(lock_path: Path) -> bool:
        """Reports whether any process currently holds the cycle lock file."""
        if not lock_path.exists():
            return False
        fh = _acquire_file_lock(lock_path)
        if fh is None:
            return True
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        fh.close()
        return False


def select_mappings(mappings: list[Mapping], mapping_id: str | None) -> list[Mapping]:
    """Enabled mappings in stored order, optionally narrowed to one id.

    Raises:
        MappingNotFoundError: If `mapping_id` is given but missing or disabled.
    """
    selected = [m for m in mappings if m.enabled]
    if mapping_id:
        selected = [m for m in selected if m.id == mapping_id]
        if not selected:
            raise MappingNotFoundError(f"Mapping {mapping_id} not found or disabled")
    return selected


def protected_paths(
    mapping: Mapping, all_mappings: list[Mapping], root_files: list[str]
) -> list[str]:
    """Paths under a mapping's target that its mirror must not delete.

    These are the targets of other mappings nested inside it and, for a
    mapping at the repository root, the housekeeping files.
    """
    base = mapping.repo_subdir.strip("/")
    protected = []
    for other in all_mappings:
        other_subdir = other.repo_subdir.strip("/")
        if other.id == mapping.id or not other_subdir or other_subdir == base:
            continue
        if not base:
            protected.append(other_subdir)
        elif other_subdir.startswith(base + "/"):
            protected.append(other_subdir[len(base) + 1 :])
    if not base:
        protected.extend(p.strip("/") for p in root_files if p)
    return protected


def _looks_like_mapping_store(path: Path) -> bool:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return False
    mappings = data.get("mappings") if isinstance(data, dict) else None
    return (
        isinstance(mappings, list)
        and len(mappings) > 0
        and isinstance(mappings[0], dict)
        and bool(mappings[0].get("source_dir"))
    )


class Orchestrator:
    """Runs backup cycles: one fresh clone, every selected mapping, housekeeping.

    All collaborators are injected so independent instances can be built
    (and faked) freely; only the guard decides whether a cycle may start.

    Attributes:
        config (GlobalConfig): Process configuration.
        mappings (MappingStore): Mapping and settings store.
        history (HistoryStore): Commit history store.
        guard (BackupGuard): Mutual exclusion for cycles.
        syncer (FileSyncer): Directory mirroring capability.
        generator (CommitMessageGenerator): AI commit capability.
        preparer (Callable[[GlobalConfig], GitRepo]): Working copy factory.
    """

    def __init__(
        self,
        config: GlobalConfig,
        mappings: MappingStore,
        history: HistoryStore,
        guard: BackupGuard | None = None,
        syncer: FileSyncer | None = None,
        generator: CommitMessageGenerator | None = None,
        preparer: Callable[[GlobalConfig], GitRepo] = prepare_repo,
    ):
        self.config = config
        self.mappings = mappings
        self.history = history
        self.guard = guard or BackupGuard()
        self.syncer = syncer or RsyncSyncer()
        self.generator = generator or CopilotGenerator(config.commit.tool)
        self.preparer = preparer

    @property
    def is_running(self) -> bool:
        return self.guard.is_running

    def run_cycle(self, mapping_id: str | None = None) -> list[CycleResult]:
        """Runs one full backup cycle.

        Args:
            mapping_id (str | None): Back up only this (enabled) mapping.

        Returns:
            list[CycleResult]: One result per selected mapping, in order.

        Raises:
            BackupInProgressError: If another cycle is running. Nothing is queued.
            MappingNotFoundError: If `mapping_id` is missing or disabled.
            RuntimeError: If the repository cannot be prepared.
        """
        if not self.guard.acquire():
            raise BackupInProgressError("Backup already in progress")

        try:
            logger.info(f"=== Backup cycle started at {utc_timestamp()} ===")
            results = self._run(mapping_id)
        finally:
            self.guard.release()

        failed = sum(1 for r in results if r.status == ERROR)
        logger.info(
            f"=== Backup cycle finished: {len(results)} mappings, {failed} failed ==="
        )
        return results

    def _run(self, mapping_id: str | None) -> list[CycleResult]:
        settings = self.mappings.get_settings()
        config = self.config.with_settings(settings.global_ignore_patterns)

        repo = self.preparer(config)

        if not self.mappings.exists() and self.restore_config(repo.path, settings):
            settings = self.mappings.get_settings()
            config = self.config.with_settings(settings.global_ignore_patterns)

        all_mappings = self.mappings.list_mappings()
        selected = select_mappings(all_mappings, mapping_id)

        root_files = [settings.config_backup_path]
        if any(m.readme_section for m in all_mappings):
            root_files.append(README_FILE)
        results = []
        for mapping in selected:
            protected = protected_paths(mapping, all_mappings, root_files)
            results.append(self._backup_mapping(repo, mapping, config, protected))

        self._housekeeping(repo, config, settings, selected, results)
        return results

    def _backup_mapping(
        self,
        repo: GitRepo,
        mapping: Mapping,
        config: GlobalConfig,
        protected: list[str],
    ) -> CycleResult:
        try:
            outcome = sync_mapping(
                repo, mapping, config, self.syncer, self.generator, protected
            )
        except Exception as e:
            logger.error(f"ERROR {mapping.name}: Backup failed: {e}")
            return CycleResult(mapping.id, mapping.name, ERROR, error=str(e))

        if outcome is None:
            return CycleResult(mapping.id, mapping.name, NO_CHANGE)

        entry = HistoryEntry(
            timestamp=utc_timestamp(),
            mapping_id=mapping.id,
            mapping_name=mapping.name,
            commit_sha=outcome.commit_sha,
            commit_message=outcome.commit_message,
            files_changed=outcome.files_changed,
            commit_url=build_commit_url(config.repo.url, outcome.commit_sha),
        )
        try:
            self.history.append(entry)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"ERROR {mapping.name}: Could not record history: {e}")
        return CycleResult(mapping.id, mapping.name, SUCCESS, entry=entry)

    def restore_config(self, repo_root: Path, settings: Settings) -> bool:
        """Recovers the mapping store from the fresh clone.

        The explicit recovery path is tried first; it only needs a
        `mappings` list. Otherwise root-level `*.json` files are scanned in
        lexicographic order and the first one with a non-empty `mappings`
        list whose first entry has a `source_dir` wins.

        Returns:
            bool: True if a configuration was restored.
        """
        explicit = settings.config_backup_path or self.config.paths.config_backup_path
        if explicit:
            candidate = repo_root / explicit
            if candidate.is_file() and self.mappings.import_file(candidate):
                logger.info(f"RESTORED: Config from repo path {explicit}.")
                return True

        try:
            candidates = sorted(p for p in repo_root.glob("*.json") if p.is_file())
        except OSError as e:
            logger.error(f"ERROR: Config auto-discovery failed: {e}")
            return False

        for candidate in candidates:
            if _looks_like_mapping_store(candidate) and self.mappings.import_file(
                candidate
            ):
                logger.info(f"RESTORED: Auto-discovered config {candidate.name}.")
                return True
        return False

    def _housekeeping(
        self,
        repo: GitRepo,
        config: GlobalConfig,
        settings: Settings,
        selected: list[Mapping],
        results: list[CycleResult],
    ) -> None:
        written = []

        try:
            if update_readme(
                repo.path / README_FILE,
                repo.path,
                selected,
                results,
                self.generator,
                config.commit.describe_timeout,
            ):
                written.append(README_FILE)
        except Exception as e:
            logger.error(f"ERROR: README update failed: {e}")

        backup_path = settings.config_backup_path.strip("/")
        if backup_path and self.mappings.exists():
            try:
                if ".." in Path(backup_path).parts:
                    raise ValueError(f"Invalid config backup path: {backup_path}")
                dest = repo.path / backup_path
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(self.mappings.path, dest)
                written.append(backup_path)
                logger.info(f"CONFIG: Copied to {backup_path}.")
            except (OSError, ValueError) as e:
                logger.error(f"ERROR: Config backup failed: {e}")

        if not written:
            return

        try:
            if not any(repo.status_porcelain(p) for p in written):
                return
            for p in written:
                repo.add_all(p)
            repo.commit(METADATA_COMMIT_MESSAGE, paths=written)
            repo.push(config.repo.branch, remote=config.authenticated_url())
            logger.info("SUCCESS: Committed git-backup metadata updates.")
        except Exception as e:
            logger.error(f"ERROR: Metadata commit failed: {e}")

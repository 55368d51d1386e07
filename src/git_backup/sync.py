"""Mirroring one mapping into the working copy, then commit and push."""

import logging
import subprocess
from collections.abc import Iterable
from pathlib import Path

from .commit import CommitMessageGenerator, commit_changes
from .config import ConfigError, GlobalConfig
from .constants import (
    ALWAYS_EXCLUDE,
    APP_NAME,
    INVALID_PATH_CHARS,
    MANAGED_IGNORE_HEADER,
)
from .git_wrapper import GitRepo
from .models import Mapping, SyncOutcome

logger = logging.getLogger(APP_NAME)


class SyncError(RuntimeError):
    """Raised when the file-sync tool fails for a mapping."""


class FileSyncer:
    """Base class defining the interface for one-way directory mirroring."""

    def mirror(self, source: Path, target: Path, excludes: list[str]) -> None:
        """Makes `target` an exact copy of `source`, minus `excludes`.

        Files in `target` that are absent from `source` are deleted unless
        an exclusion matches them.

        Raises:
            SyncError: If the mirror could not be completed.
        """
        raise NotImplementedError


class RsyncSyncer(FileSyncer):
    """FileSyncer implementation backed by `rsync -a --delete`."""

    def __init__(self, executable: str = "rsync"):
        self.executable = executable

    def build_command(
        self, source: Path, target: Path, excludes: list[str]
    ) -> list[str]:
        cmd = [self.executable, "-a", "--delete"]
        cmd.extend(f"--exclude={pattern}" for pattern in excludes)
        # Trailing slashes copy the *contents* of source into target.
        cmd.extend([f"{source}/", f"{target}/"])
        return cmd

    def mirror(self, source: Path, target: Path, excludes: list[str]) -> None:
        cmd = self.build_command(source, target, excludes)
        try:
            res = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise SyncError(f"rsync could not be started: {e}") from e
        if res.returncode != 0:
            detail = res.stderr.strip()
            raise SyncError(f"rsync exited with code {res.returncode}: {detail}")


def validate_paths(*paths: str | Path) -> None:
    """Rejects paths containing characters a shell could interpret.

    Raises:
        ConfigError: On the first offending path.
    """
    for p in paths:
        if any(c in str(p) for c in INVALID_PATH_CHARS):
            raise ConfigError(f"Invalid path: {p}")


def merged_patterns(config: GlobalConfig, mapping: Mapping) -> list[str]:
    """Global patterns followed by mapping patterns, blanks dropped."""
    global_patterns = [p for p in config.global_ignore_patterns if p]
    mapping_patterns = [p for p in mapping.ignore_patterns if p]
    return global_patterns + mapping_patterns


def read_source_gitignore(source: Path) -> list[str]:
    """Reads the exclusions of a `.gitignore` at the root of the source directory.

    Lines follow gitignore rules rather than rsync filter-file rules. Comments
    and blank lines are dropped and trailing whitespace is ignored. A leading
    backslash escapes `#` or `!`. Negations are skipped since rsync exclusions
    cannot re-include a path, and a lone `!` never reaches rsync, where it
    would clear the exclusion list.
    """
    gitignore = source / ".gitignore"
    if not gitignore.is_file():
        return []

    patterns = []
    for line in gitignore.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.rstrip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("!"):
            logger.debug(f"Skipping negated pattern '{line}' from {gitignore}")
            continue
        if line.startswith(("\\#", "\\!")):
            line = line[1:]
        patterns.append(line)
    return patterns


def build_excludes(
    config: GlobalConfig,
    mapping: Mapping,
    source: Path,
    protected: Iterable[str] = (),
) -> list[str]:
    """Assembles the full rsync exclusion list for a mapping.

    Order: repository metadata, merged global + mapping patterns, patterns
    from the source's own `.gitignore`, then anchored protected paths.
    """
    excludes = list(ALWAYS_EXCLUDE)
    excludes.extend(merged_patterns(config, mapping))
    excludes.extend(read_source_gitignore(source))
    excludes.extend("/" + p.strip("/") for p in protected if p.strip("/"))
    return excludes


def write_managed_ignore(target: Path, patterns: list[str]) -> None:
    """Writes (or clears) the managed `.gitignore` in a mapping's target directory.

    A `.gitignore` without the managed header is left untouched when there
    is nothing to write.
    """
    gitignore = target / ".gitignore"
    if patterns:
        gitignore.write_text(MANAGED_IGNORE_HEADER + "\n" + "\n".join(patterns) + "\n")
        return

    if gitignore.is_file():
        first_line = gitignore.read_text(errors="replace").split("\n", 1)[0]
        if first_line.strip() == MANAGED_IGNORE_HEADER:
            gitignore.unlink()


def sync_mapping(
    repo: GitRepo,
    mapping: Mapping,
    config: GlobalConfig,
    syncer: FileSyncer,
    generator: CommitMessageGenerator,
    protected: Iterable[str] = (),
) -> SyncOutcome | None:
    """Mirrors one mapping into the working copy, commits and pushes.

    Steps:
    1. Resolves and validates the source and target paths.
    2. Mirrors the source with the merged exclusion rules.
    3. Writes the managed `.gitignore`.
    4. Stops if nothing under the target differs from the last commit.
    5. Stages, commits (AI or fallback message), pushes, reads back the SHA.

    Args:
        repo (GitRepo): The cycle's working copy.
        mapping (Mapping): The mapping to back up.
        config (GlobalConfig): Per-cycle configuration (with global patterns).
        syncer (FileSyncer): The mirroring capability.
        generator (CommitMessageGenerator): The AI commit capability.
        protected (Iterable[str]): Paths, relative to the target, that the
                                   mirror must never delete.

    Returns:
        SyncOutcome | None: The commit made, or None if there were no changes.

    Raises:
        ConfigError: If a path contains forbidden characters.
        SyncError: If mirroring fails.
        RuntimeError: If a git operation (stage, commit, push) fails.
    """
    subdir = mapping.repo_subdir.strip("/")
    target = repo.path / subdir if subdir else repo.path
    source = Path(mapping.source_dir)

    if ".." in Path(subdir).parts:
        raise ConfigError(f"Invalid repository subdirectory: {mapping.repo_subdir}")
    validate_paths(mapping.source_dir, target)

    target.mkdir(parents=True, exist_ok=True)

    excludes = build_excludes(config, mapping, source, protected)
    logger.info(f"SYNC {mapping.name}: {source} -> {target}")
    syncer.mirror(source, target, excludes)

    patterns = merged_patterns(config, mapping)
    write_managed_ignore(target, patterns)
    if patterns:
        logger.info(f"SYNC {mapping.name}: Wrote .gitignore ({len(patterns)} patterns)")

    pathspec = subdir or "."
    changes = repo.status_porcelain(pathspec)
    if not changes:
        logger.info(f"SKIPPED {mapping.name}: No changes detected.")
        return None

    files_changed = len(changes)
    logger.info(f"SYNC {mapping.name}: {files_changed} files changed.")

    repo.add_all(pathspec)
    result = commit_changes(repo, mapping.name, generator, config.commit.timeout)
    repo.push(config.repo.branch, remote=config.authenticated_url())

    commit_sha = repo.head_sha()
    logger.info(f"SUCCESS {mapping.name}: Pushed {commit_sha[:7]}.")
    return SyncOutcome(
        commit_sha=commit_sha,
        commit_message=result.message,
        files_changed=files_changed,
        via=result.via,
    )

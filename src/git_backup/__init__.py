"""git-backup: Scheduled mirroring of local directories into a git repository.

This package provides the backup cycle (fresh clone, rsync mirror, AI or
fallback commit, push), the JSON mapping and history stores, the scheduler
daemon and the command-line interface.
"""

from . import (
    cli,
    commit,
    config,
    constants,
    daemon,
    git_wrapper,
    history,
    mappings,
    models,
    orchestrator,
    readme,
    repository,
    scheduler,
    storage,
    sync,
    urls,
)

__all__ = [
    "cli",
    "commit",
    "config",
    "constants",
    "daemon",
    "git_wrapper",
    "history",
    "mappings",
    "models",
    "orchestrator",
    "readme",
    "repository",
    "scheduler",
    "storage",
    "sync",
    "urls",
]

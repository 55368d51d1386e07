"""Fresh working copy preparation, once per backup cycle."""

import logging
import shutil
from pathlib import Path

from .config import ConfigError, GlobalConfig
from .constants import APP_NAME
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def _check_removable(path: Path) -> None:
    resolved = path.resolve()
    if resolved == Path(resolved.anchor) or resolved == Path.home().resolve():
        raise ConfigError(f"Refusing to use {resolved} as the working copy")


def prepare_repo(config: GlobalConfig) -> GitRepo:
    """Discards any previous working copy and clones the target repository afresh.

    Steps:
    1. Removes the working copy path if it exists (recursive, forced).
    2. Clones the remote with the credential-bearing URL, then resets
       origin to the credential-free URL.
    3. Checks out the configured branch, creating it locally if the remote
       does not have it yet (first backup into an empty repository).
    4. Sets author identity and default branch in the clone's local config.

    Args:
        config (GlobalConfig): The process configuration.

    Returns:
        GitRepo: The ready working copy.

    Raises:
        RuntimeError: If cloning fails. Fatal to the cycle.
        ConfigError: If the working copy path is the filesystem root or home.
    """
    repo_dir = config.repo.path
    branch = config.repo.branch
    _check_removable(repo_dir)

    if repo_dir.exists():
        logger.info(f"PREPARE: Removing {repo_dir} for a fresh clone.")
        if repo_dir.is_dir() and not repo_dir.is_symlink():
            shutil.rmtree(repo_dir)
        else:
            repo_dir.unlink()

    logger.info(f"PREPARE: Cloning {config.safe_repo_url()}...")
    repo = GitRepo.clone(config.authenticated_url(), repo_dir)
    # The credential is supplied per push, not kept in the clone's config.
    repo.set_remote_url(config.safe_repo_url())

    try:
        repo.checkout(branch)
    except RuntimeError:
        logger.info(f"PREPARE: Branch '{branch}' not on remote. Creating it.")
        repo.checkout_new_branch(branch)

    repo.set_config("user.name", config.author.name)
    repo.set_config("user.email", config.author.email)
    repo.set_config("init.defaultBranch", branch)

    return repo

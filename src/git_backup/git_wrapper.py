import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME
from .urls import redact_credentials

logger = logging.getLogger(APP_NAME)


def _git(args: list[str], cwd: Path | None = None, capture: bool = True) -> str:
    """Runs a git command and returns its stripped stdout.

    Raises:
        RuntimeError: If git exits non-zero or cannot be spawned. The message
                      has any URL credential redacted.
    """
    try:
        res = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=capture,
            text=True,
            check=True,
        )
        return res.stdout.strip() if capture else ""
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise RuntimeError(f"Git error: {redact_credentials(detail)}") from None
    except OSError as e:
        raise RuntimeError(f"Git error: {e}") from e


class GitRepo:
    """A wrapper around the Git command-line interface for the working copy.

    This is the version-control capability the preparer, synchronizer and
    orchestrator are written against. Every call runs `git` as an argument
    vector inside the repository; nothing goes through a shell.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, url: str, path: Path) -> "GitRepo":
        """Clones `url` into `path` and wraps the result.

        Args:
            url (str): The (possibly credential-bearing) remote URL.
            path (Path): The destination; its parent is created if needed.

        Returns:
            GitRepo: The new working copy.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        _git(["clone", "--quiet", url, str(path)])
        return cls(path)

    def _run(self, args: list[str], capture: bool = True) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to capture and return stdout.
                                      Defaults to True.

        Returns:
            str: The stripped stdout of the command if capture is True,
                 otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        return _git(args, cwd=self.path, capture=capture)

    def checkout(self, branch: str) -> None:
        """Checks out an existing branch (remote-tracking branches included)."""
        self._run(["checkout", "--quiet", branch])

    def checkout_new_branch(self, branch: str) -> None:
        """Creates `branch` at the current HEAD and switches to it."""
        self._run(["checkout", "--quiet", "-b", branch])

    def set_config(self, key: str, value: str) -> None:
        """Writes a value into the repository's local config (never --global)."""
        self._run(["config", "--local", key, value])

    def status_porcelain(self, path: str | None = None) -> list[str]:
        """Returns the porcelain status, one line per changed file.

        Untracked directories are expanded so every file counts once.

        Args:
            path (str | None, optional): Restrict the status to this pathspec.

        Returns:
            list[str]: The lines of `git status --porcelain`.
        """
        cmd = ["status", "--porcelain", "--untracked-files=all"]
        if path:
            cmd.extend(["--", path])
        output = self._run(cmd)
        return output.splitlines() if output else []

    def add_all(self, path: str | None = None) -> None:
        """Stages all changes (modified, deleted and untracked files).

        Args:
            path (str | None, optional): Restrict staging to this pathspec.
        """
        cmd = ["add", "--all"]
        if path:
            cmd.extend(["--", path])
        self._run(cmd)

    def commit(self, message: str, paths: list[str] | None = None) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
            paths (list[str] | None, optional): Commit only these paths, leaving
                                                anything else in the index staged.
        """
        cmd = ["commit", "--quiet", "-m", message]
        if paths:
            cmd.extend(["--", *paths])
        self._run(cmd)

    def set_remote_url(self, url: str, remote: str = "origin") -> None:
        """Replaces the URL recorded for `remote` in the local config."""
        self._run(["remote", "set-url", remote, url])

    def push(self, branch: str, remote: str = "origin") -> None:
        """Pushes the local `branch` to the same branch name on `remote`.

        Args:
            branch (str): The branch to push.
            remote (str, optional): A remote name or a URL. A URL is used for
                                    this push only and never written to config.
        """
        self._run(["push", "--quiet", remote, f"{branch}:refs/heads/{branch}"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'main').

        Returns:
            Optional[str]: The full SHA-1 hash,
                           or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except Exception as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def head_sha(self) -> str:
        """The SHA-1 of the most recent commit.

        Raises:
            RuntimeError: If the repository has no commits.
        """
        return self._run(["rev-parse", "HEAD"])

    def last_commit_message(self) -> str:
        """The full message of the most recent commit, as recorded in the repository."""
        return self._run(["log", "-1", "--format=%B"])

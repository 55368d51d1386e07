"""Commit creation: AI-written messages with a deterministic fallback."""

import logging
import subprocess
from pathlib import Path

from .constants import (
    APP_NAME,
    COMMIT_PROMPT,
    COMMIT_TOOL_PERMISSION,
    DESCRIBE_TOOL_PERMISSION,
)
from .git_wrapper import GitRepo
from .models import CommitResult, utc_timestamp

logger = logging.getLogger(APP_NAME)

DESCRIBE_PROMPT = (
    'Look at the files in the directory "{path}" and write a concise Markdown '
    "description (can include sentences, lists of features or notable tools "
    "like Docker images/projects, etc) of what this project or directory "
    "contains. Describe the purpose of the application or configuration, key "
    "technologies used, and notable files. Do not include any thinking or "
    "general information about the backup process. Output ONLY the Markdown "
    "text, no code fences, no tool runs."
)


class CommitMessageGenerator:
    """Base class defining the interface for AI commit tooling.

    The base implementation has no tool behind it: every commit goes through
    the fallback message and no directory descriptions are produced.
    """

    def generate_commit(self, repo_path: Path, timeout: int) -> None:
        """Summarizes the staged changes in `repo_path` and commits them.

        Args:
            repo_path (Path): The working copy with staged changes.
            timeout (int): Seconds before the attempt is abandoned.

        Raises:
            Exception: Any failure; callers fall back to a synthesized message.
        """
        raise RuntimeError("No commit message generator configured")

    def describe_directory(self, path: Path, timeout: int) -> str | None:
        """Returns a short Markdown description of a directory, if available."""
        return None


class CopilotGenerator(CommitMessageGenerator):
    """Generator backed by the GitHub Copilot CLI.

    Attributes:
        tool (str): The executable name or path.
    """

    def __init__(self, tool: str = "copilot"):
        self.tool = tool

    def _invoke(self, prompt: str, permission: str, cwd: Path, timeout: int) -> str:
        res = subprocess.run(
            [self.tool, "-p", prompt, "--allow-tool", permission],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if res.returncode != 0:
            raise RuntimeError(f"{self.tool} exited with code {res.returncode}")
        return res.stdout

    def generate_commit(self, repo_path: Path, timeout: int) -> None:
        # Only the exit status counts; stdout is not the canonical message.
        self._invoke(COMMIT_PROMPT, COMMIT_TOOL_PERMISSION, repo_path, timeout)

    def describe_directory(self, path: Path, timeout: int) -> str | None:
        prompt = DESCRIBE_PROMPT.format(path=path)
        output = self._invoke(prompt, DESCRIBE_TOOL_PERMISSION, path, timeout)
        return output.strip() or None


def fallback_message(label: str) -> str:
    """The dependency-free commit message: `Backup <label>: <ISO-8601 timestamp>`."""
    return f"Backup {label}: {utc_timestamp()}"


def commit_changes(
    repo: GitRepo, label: str, generator: CommitMessageGenerator, timeout: int
) -> CommitResult:
    """Commits the staged changes, preferring an AI-written message.

    The AI path succeeds only if the tool exits cleanly and HEAD moved; the
    message is then read back from the repository. Any failure (spawn
    error, non-zero exit, timeout, no new commit) commits with
    `fallback_message(label)` instead, unless the tool had already committed
    before failing; that commit is kept.

    Args:
        repo (GitRepo): The working copy with staged changes.
        label (str): The mapping name used in the fallback message.
        generator (CommitMessageGenerator): The AI commit capability.
        timeout (int): Seconds allowed for the AI tool.

    Returns:
        CommitResult: `via` is "ai" or "fallback"; `message` is what was recorded.
    """
    before = repo.rev_parse("HEAD")
    try:
        logger.info(f"COMMIT {label}: Attempting AI commit...")
        generator.generate_commit(repo.path, timeout)
        if repo.rev_parse("HEAD") == before:
            raise RuntimeError("the tool exited without creating a commit")
        message = repo.last_commit_message()
        logger.info(f"COMMIT {label}: AI commit created.")
        return CommitResult(via="ai", message=message)
    except Exception as e:
        if repo.rev_parse("HEAD") != before:
            # The tool committed before failing.
            message = repo.last_commit_message()
            logger.info(f"COMMIT {label}: AI tool failed after committing ({e}).")
            return CommitResult(via="ai", message=message)
        message = fallback_message(label)
        logger.info(f"COMMIT {label}: AI commit unavailable ({e}). Using fallback.")

    repo.commit(message)
    return CommitResult(via="fallback", message=message)

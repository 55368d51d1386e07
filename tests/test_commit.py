"""Tests for AI commit messages and the deterministic fallback."""

import logging
import re
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_backup.commit import (
    CommitMessageGenerator,
    CopilotGenerator,
    commit_changes,
    fallback_message,
)

ISO_FALLBACK = re.compile(
    r"^Backup web01: \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"
)


@pytest.fixture
def repo(tmp_path: Path) -> MagicMock:
    repo = MagicMock()
    repo.path = tmp_path
    return repo


def test_fallback_message_format() -> None:
    assert ISO_FALLBACK.match(fallback_message("web01"))


def test_ai_commit_reads_message_from_repository(
    mocker: MagicMock, repo: MagicMock
) -> None:
    """Verifies that the recorded message comes from git, not the tool's stdout."""
    run = mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=0, stdout="I made a commit!"),
    )
    repo.rev_parse.side_effect = ["old_sha", "new_sha"]
    repo.last_commit_message.return_value = "Update nginx worker settings"

    result = commit_changes(repo, "web01", CopilotGenerator(), timeout=120)

    assert result.via == "ai"
    assert result.message == "Update nginx worker settings"
    repo.commit.assert_not_called()

    cmd = run.call_args.args[0]
    assert cmd == [
        "copilot",
        "-p",
        "git commit with message summarizing these changes",
        "--allow-tool",
        "shell(git:*)",
    ]
    assert run.call_args.kwargs["cwd"] == repo.path
    assert run.call_args.kwargs["timeout"] == 120


@pytest.mark.parametrize(
    "outcome",
    [
        MagicMock(returncode=1, stdout=""),
        subprocess.TimeoutExpired(["copilot"], 120),
        FileNotFoundError("copilot"),
    ],
)
def test_tool_failure_falls_back(
    mocker: MagicMock, repo: MagicMock, outcome: object
) -> None:
    """Verifies that exit 1, a timeout or a missing tool all use the fallback."""
    if isinstance(outcome, BaseException):
        mocker.patch("subprocess.run", side_effect=outcome)
    else:
        mocker.patch("subprocess.run", return_value=outcome)
    repo.rev_parse.return_value = "old_sha"

    result = commit_changes(repo, "web01", CopilotGenerator(), timeout=120)

    assert result.via == "fallback"
    assert ISO_FALLBACK.match(result.message)
    repo.commit.assert_called_once_with(result.message)


def test_tool_commits_then_times_out(mocker: MagicMock, repo: MagicMock) -> None:
    """Verifies that a commit made before the tool failed is kept, not repeated."""
    mocker.patch(
        "subprocess.run", side_effect=subprocess.TimeoutExpired(["copilot"], 120)
    )
    repo.rev_parse.side_effect = ["old_sha", "new_sha"]
    repo.last_commit_message.return_value = "Tune nginx workers"

    result = commit_changes(repo, "web01", CopilotGenerator(), timeout=120)

    assert result.via == "ai"
    assert result.message == "Tune nginx workers"
    repo.commit.assert_not_called()


def test_tool_exits_cleanly_without_committing(
    mocker: MagicMock, repo: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="git-backup")
    mocker.patch("subprocess.run", return_value=MagicMock(returncode=0, stdout=""))
    repo.rev_parse.return_value = "same_sha"

    result = commit_changes(repo, "web01", CopilotGenerator(), timeout=5)

    assert result.via == "fallback"
    repo.commit.assert_called_once()
    assert "without creating a commit" in caplog.text


def test_base_generator_always_falls_back(repo: MagicMock) -> None:
    repo.rev_parse.return_value = None

    result = commit_changes(repo, "web01", CommitMessageGenerator(), timeout=5)

    assert result.via == "fallback"
    assert CommitMessageGenerator().describe_directory(repo.path, 5) is None


def test_describe_directory(mocker: MagicMock, tmp_path: Path) -> None:
    run = mocker.patch(
        "subprocess.run",
        return_value=MagicMock(returncode=0, stdout="\nNginx reverse proxy.\n"),
    )

    description = CopilotGenerator("gh-copilot").describe_directory(tmp_path, 60)

    assert description == "Nginx reverse proxy."
    cmd = run.call_args.args[0]
    assert cmd[0] == "gh-copilot"
    assert cmd[-1] == "shell(ls:*,cat:*,head:*,file:*)"
    assert str(tmp_path) in cmd[2]

"""Tests for the long-running daemon entry point."""

import logging
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_backup import daemon
from git_backup.config import GlobalConfig
from git_backup.orchestrator import Orchestrator


@pytest.fixture(autouse=True)
def restore_handlers() -> Iterator[None]:
    """Keeps handlers added by setup_logging from leaking between tests."""
    logger = logging.getLogger("git-backup")
    saved = list(logger.handlers)
    yield
    for handler in list(logger.handlers):
        if handler not in saved:
            logger.removeHandler(handler)
            handler.close()
    for handler in saved:
        if handler not in logger.handlers:
            logger.addHandler(handler)


@pytest.fixture
def config(tmp_path: Path) -> GlobalConfig:
    conf = GlobalConfig()
    conf.repo.url = "https://github.com/acme/backups.git"
    conf.repo.token = "ghp_secret"
    conf.paths.log_file = tmp_path / "logs" / "daemon.log"
    conf.paths.mappings_file = tmp_path / "config.json"
    conf.paths.history_file = tmp_path / "history.json"
    conf.legacy.source_dir = "/srv/data"
    return conf


def test_setup_logging_daemon_mode_rotates(config: GlobalConfig) -> None:
    config.limits.max_log_size = 1024
    daemon.setup_logging(False, config)

    handlers = logging.getLogger("git-backup").handlers
    file_handlers = [h for h in handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 1024
    assert file_handlers[0].backupCount == 5
    assert config.paths.log_file.parent.is_dir()


def test_setup_logging_interactive_has_no_file(config: GlobalConfig) -> None:
    daemon.setup_logging(True, config)
    daemon.setup_logging(True, config)

    handlers = logging.getLogger("git-backup").handlers
    assert len(handlers) == 1
    assert not any(isinstance(h, RotatingFileHandler) for h in handlers)


def test_build_orchestrator_wires_stores(
    config: GlobalConfig, mocker: MagicMock
) -> None:
    lock = config.paths.mappings_file.parent / "backup.lock"
    mocker.patch("git_backup.daemon.LOCK_FILE", lock)

    orch = daemon.build_orchestrator(config)

    assert isinstance(orch, Orchestrator)
    assert orch.mappings.path == config.paths.mappings_file
    assert orch.history.path == config.paths.history_file
    assert orch.guard.lock_path == lock
    assert orch.mappings.list_mappings()[0].source_dir == "/srv/data"


def test_main_exits_without_repository_url(
    mocker: MagicMock, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    conf = GlobalConfig()
    conf.paths.log_file = tmp_path / "daemon.log"
    mocker.patch("git_backup.daemon.GlobalConfig.load", return_value=conf)
    scheduler = mocker.patch("git_backup.daemon.Scheduler")

    with pytest.raises(SystemExit) as excinfo:
        daemon.main()

    assert excinfo.value.code == 1
    assert "GIT_REPO_URL" in caplog.text
    scheduler.assert_not_called()


def test_main_runs_scheduler_without_leaking_token(
    mocker: MagicMock,
    tmp_path: Path,
    config: GlobalConfig,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="git-backup")
    mocker.patch("git_backup.daemon.GlobalConfig.load", return_value=config)
    mocker.patch("git_backup.daemon.PID_FILE", tmp_path / "daemon.pid")
    mocker.patch("git_backup.daemon.LOCK_FILE", tmp_path / "backup.lock")
    mocker.patch("git_backup.daemon.atexit.register")
    mocker.patch("git_backup.daemon.signal.signal")
    scheduler_cls = mocker.patch("git_backup.daemon.Scheduler")

    daemon.main()

    scheduler_cls.assert_called_once()
    assert scheduler_cls.call_args.args[1] == 6
    scheduler_cls.return_value.run.assert_called_once()
    assert (tmp_path / "daemon.pid").exists()
    assert "https://github.com/acme/backups.git" in caplog.text
    assert "ghp_secret" not in caplog.text

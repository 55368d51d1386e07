import atexit
import logging
import os
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from types import FrameType

from rich.console import Console

from .config import ConfigError, GlobalConfig
from .constants import APP_NAME, LOCK_FILE, PID_FILE
from .history import HistoryStore
from .mappings import MappingStore
from .orchestrator import BackupGuard, Orchestrator
from .scheduler import Scheduler

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

err_console = Console(stderr=True)


def setup_logging(interactive: bool, config: GlobalConfig) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout only. If False, logs to
                            stderr and to the rotating log file.
        config (GlobalConfig): Supplies the log file path and rotation size.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Always log to a stream (stderr is captured by systemd/docker).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        log_file = config.paths.log_file
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=config.limits.max_log_size,
                backupCount=5,
            )
        except OSError as e:
            logger.warning(f"Could not open log file {log_file}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def build_orchestrator(config: GlobalConfig) -> Orchestrator:
    """Wires the stores and the cross-process guard into an orchestrator."""
    mappings = MappingStore(
        config.paths.mappings_file,
        legacy_source_dir=config.legacy.source_dir,
        legacy_repo_subdir=config.legacy.repo_subdir,
    )
    history = HistoryStore(config.paths.history_file)
    return Orchestrator(config, mappings, history, guard=BackupGuard(LOCK_FILE))


def _write_pid_file() -> None:
    try:
        PID_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


def main() -> None:
    """The long-running daemon: one cycle now, then one every N hours.

    Exits with status 1 if the configuration is unusable. SIGTERM and
    SIGINT stop the schedule; a cycle already running is allowed to finish.
    """
    config = GlobalConfig.load()
    setup_logging(False, config)

    try:
        config.validate()
    except ConfigError as e:
        logger.critical(f"FATAL: {e}")
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)

    _write_pid_file()

    stop_event = threading.Event()

    def stop_handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"SHUTDOWN: Received signal {signum}. Stopping scheduler.")
        stop_event.set()

    signal.signal(signal.SIGTERM, stop_handler)
    signal.signal(signal.SIGINT, stop_handler)

    logger.info(
        f"STARTUP: Backing up to {config.safe_repo_url()} "
        f"(branch '{config.repo.branch}', every {config.schedule.interval_hours}h)."
    )

    scheduler = Scheduler(build_orchestrator(config), config.schedule.interval_hours)
    scheduler.run(stop_event)
    scheduler.join()
    logger.info("SHUTDOWN: Daemon stopped.")


if __name__ == "__main__":
    main()

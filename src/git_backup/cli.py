import argparse
import logging
import os
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon
from .config import ConfigError, GlobalConfig
from .constants import APP_NAME, CONFIG_FILE, LOCK_FILE, PID_FILE
from .history import HistoryStore
from .mappings import DuplicateSubdirError, MappingNotFoundError, MappingStore
from .models import ERROR, NO_CHANGE, SUCCESS, CycleResult
from .orchestrator import BackupGuard, BackupInProgressError

logger = logging.getLogger(APP_NAME)
console = Console()

STATUS_STYLES = {SUCCESS: "green", NO_CHANGE: "dim", ERROR: "bold red"}


def _fail(message: str) -> None:
    console.print(f"[bold red]ERROR:[/bold red] {message}")
    sys.exit(1)


def _mapping_store(config: GlobalConfig) -> MappingStore:
    return MappingStore(
        config.paths.mappings_file,
        legacy_source_dir=config.legacy.source_dir,
        legacy_repo_subdir=config.legacy.repo_subdir,
    )


def _daemon_pid() -> int | None:
    """Returns the PID recorded by a live daemon, if any."""
    if not PID_FILE.exists():
        return None
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, OSError):
        return None


def render_results(results: list[CycleResult]) -> Table:
    """Builds the per-mapping result table of one cycle."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Mapping", style="cyan")
    table.add_column("Status")
    table.add_column("Commit", style="dim")
    table.add_column("Files", justify="right")
    table.add_column("Details")

    for result in results:
        style = STATUS_STYLES.get(result.status, "white")
        commit, files, details = "-", "-", result.error or ""
        if result.entry:
            commit = result.entry.commit_sha[:7]
            files = str(result.entry.files_changed)
            details = result.entry.commit_url or result.entry.commit_message
        table.add_row(
            result.mapping_name,
            f"[{style}]{result.status}[/{style}]",
            commit,
            files,
            details,
        )
    return table


def run_now(config: GlobalConfig, mapping_id: str | None = None) -> None:
    """Runs one backup cycle in the foreground and prints its results."""
    daemon.setup_logging(True, config)
    try:
        config.validate()
    except ConfigError as e:
        _fail(str(e))

    orchestrator = daemon.build_orchestrator(config)
    try:
        with console.status("[bold blue]Running backup...[/bold blue]", spinner="dots"):
            results = orchestrator.run_cycle(mapping_id)
    except BackupInProgressError:
        console.print("[bold yellow]Backup already in progress.[/bold yellow]")
        sys.exit(1)
    except MappingNotFoundError as e:
        _fail(str(e))
    except (ConfigError, RuntimeError) as e:
        _fail(f"Backup failed: {e}")

    if not results:
        console.print("[yellow]No enabled mappings.[/yellow]")
        return
    console.print(render_results(results))
    if any(r.status == ERROR for r in results):
        sys.exit(1)


def show_status(config: GlobalConfig) -> None:
    """Displays the daemon state, the target repository and every mapping."""
    pid = _daemon_pid()
    running = BackupGuard.probe(LOCK_FILE)

    content = Text()
    content.append("Daemon:     ", style="bold")
    if pid:
        content.append(f"Active (PID {pid})\n", style="bold green")
    else:
        content.append("Stopped\n", style="bold red")
    content.append("Backup:     ", style="bold")
    if running:
        content.append("Running\n", style="bold yellow")
    else:
        content.append("Idle\n", style="green")
    content.append("Repository: ", style="bold")
    content.append(f"{config.safe_repo_url() or '(not configured)'}\n")
    content.append("Branch:     ", style="bold")
    content.append(f"{config.repo.branch}\n")
    content.append("Schedule:   ", style="bold")
    content.append(f"every {config.schedule.interval_hours}h")
    console.print(Panel(content, title="git-backup Status", expand=False))

    store = _mapping_store(config)
    history = HistoryStore(config.paths.history_file)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Mapping", style="cyan")
    table.add_column("State")
    table.add_column("Last Backup", style="dim")
    table.add_column("Commit", style="dim")

    for mapping in store.list_mappings():
        state = "[green]Enabled[/green]"
        if not mapping.enabled:
            state = "[yellow]Disabled[/yellow]"
        latest = history.latest_for_mapping(mapping.id)
        last_backup = latest.timestamp if latest else "Never"
        commit = latest.commit_sha[:7] if latest else "-"
        table.add_row(mapping.name, state, last_backup, commit)

    console.print(table)


def list_mappings(config: GlobalConfig) -> None:
    """Lists every configured mapping."""
    store = _mapping_store(config)
    mappings = store.list_mappings()
    if not store.exists():
        console.print("[dim]No mapping store yet; showing the default mapping.[/dim]")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Repo Path")
    table.add_column("Enabled")
    table.add_column("Ignore", style="dim")
    table.add_column("README")

    for m in mappings:
        table.add_row(
            m.id,
            m.name,
            m.source_dir,
            m.repo_subdir or ".",
            "yes" if m.enabled else "no",
            ", ".join(m.ignore_patterns),
            "yes" if m.readme_section else "no",
        )
    console.print(table)


def show_history(
    config: GlobalConfig, mapping_id: str | None = None, limit: int = 20
) -> None:
    """Shows the most recent backups, newest first."""
    entries = HistoryStore(config.paths.history_file).query(mapping_id, limit)
    if not entries:
        console.print("[yellow]No backups recorded yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Time", style="dim")
    table.add_column("Mapping", style="cyan")
    table.add_column("Commit")
    table.add_column("Files", justify="right")
    table.add_column("Message")

    for e in entries:
        commit = e.commit_sha[:7]
        if e.commit_url:
            commit = f"[link={e.commit_url}]{commit}[/link]"
        summary = e.commit_message.splitlines()[0] if e.commit_message else ""
        table.add_row(
            e.timestamp, e.mapping_name, commit, str(e.files_changed), summary
        )
    console.print(table)


def show_settings(config: GlobalConfig, args: argparse.Namespace) -> None:
    """Shows the global settings, updating them first if options were given."""
    store = _mapping_store(config)
    updates = {}
    if args.ignore is not None:
        updates["global_ignore_patterns"] = args.ignore
    if args.config_backup_path is not None:
        updates["config_backup_path"] = args.config_backup_path

    settings = store.update_settings(**updates) if updates else store.get_settings()
    if updates:
        console.print("[bold green]✔ Settings updated.[/bold green]")

    content = Text()
    content.append("Global ignore:      ", style="bold")
    content.append(", ".join(settings.global_ignore_patterns) or "(none)")
    content.append("\nConfig backup path: ", style="bold")
    content.append(settings.config_backup_path or "(disabled)")
    console.print(Panel(content, title="Settings", expand=False))


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="git-backup Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Env", style="magenta")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("repo", "url", "GIT_REPO_URL", '""', "Target repository (required).")
    table.add_row(
        "", "token", "GITHUB_TOKEN", '""', "Access token used for HTTPS push."
    )
    table.add_row(
        "", "branch", "GIT_BRANCH", '"main"', "Branch every mapping commits to."
    )
    table.add_row(
        "",
        "path",
        "GIT_BACKUP_REPO_DIR",
        '"~/.local/state/git-backup/repo"',
        "Working copy, deleted and re-cloned every cycle.",
    )
    table.add_row(
        "author", "name", "GIT_USER_NAME", '"Git Backup Bot"', "Commit author name."
    )
    table.add_row(
        "", "email", "GIT_USER_EMAIL", '"gitbackup@example.com"', "Commit author email."
    )
    table.add_row(
        "schedule",
        "interval_hours",
        "BACKUP_INTERVAL_HOURS",
        "6",
        "Cycles run at minute 0 of every Nth hour (e.g., 6, '6h').",
    )
    table.add_row("commit", "tool", "", '"copilot"', "AI commit tool executable.")
    table.add_row(
        "", "timeout", "", '"2m"', "Time allowed for an AI commit (e.g., '90s', 120)."
    )
    table.add_row(
        "", "describe_timeout", "", '"60s"', "Time allowed per README description."
    )
    table.add_row(
        "paths",
        "mappings_file",
        "CONFIG_FILE",
        '"~/.local/state/git-backup/config.json"',
        "Mapping store.",
    )
    table.add_row(
        "",
        "history_file",
        "HISTORY_FILE",
        '"~/.local/state/git-backup/history.json"',
        "History store.",
    )
    table.add_row(
        "",
        "config_backup_path",
        "CONFIG_BACKUP_PATH",
        '""',
        "Repo path tried first when recovering the mapping store.",
    )
    table.add_row(
        "limits",
        "max_log_size",
        "",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )
    table.add_row(
        "legacy",
        "source_dir",
        "BACKUP_DIR",
        '"/backup"',
        "Source of the default mapping when no store exists.",
    )
    table.add_row(
        "", "repo_subdir", "REPO_SUBDIR", '""', "Target of the default mapping."
    )

    console.print(table)


def show_config(config: GlobalConfig) -> None:
    """Prints the effective configuration with the credential hidden."""
    content = Text()
    content.append(f"File:        {CONFIG_FILE}\n", style="dim")
    content.append(f"Repository:  {config.safe_repo_url() or '(not configured)'}\n")
    content.append(f"Token:       {'set' if config.repo.token else 'not set'}\n")
    content.append(f"Branch:      {config.repo.branch}\n")
    content.append(f"Working copy: {config.repo.path}\n")
    content.append(f"Interval:    {config.schedule.interval_hours}h\n")
    content.append(f"Commit tool: {config.commit.tool} ({config.commit.timeout}s)\n")
    content.append(f"Mappings:    {config.paths.mappings_file}\n")
    content.append(f"History:     {config.paths.history_file}")
    console.print(Panel(content, title="Configuration", expand=False))


def _add_mapping(config: GlobalConfig, args: argparse.Namespace) -> None:
    mapping = _mapping_store(config).add_mapping(
        name=args.name,
        source_dir=args.source,
        repo_subdir=args.subdir,
        ignore_patterns=args.ignore,
        readme_section=args.readme,
    )
    console.print(
        f"✔ Added [cyan]{mapping.name}[/cyan] ({mapping.id})", style="green"
    )


def _update_mapping(config: GlobalConfig, args: argparse.Namespace) -> None:
    mapping = _mapping_store(config).update_mapping(
        args.id,
        name=args.name,
        source_dir=args.source,
        repo_subdir=args.subdir,
        enabled=args.enabled,
        ignore_patterns=args.ignore,
        readme_section=args.readme,
    )
    console.print(
        f"✔ Updated [cyan]{mapping.name}[/cyan] ({mapping.id})", style="green"
    )


def _remove_mapping(config: GlobalConfig, args: argparse.Namespace) -> None:
    _mapping_store(config).delete_mapping(args.id)
    console.print(f"✔ Removed mapping [cyan]{args.id}[/cyan]", style="green")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-backup",
        description="Mirror local directories into a git repository on a schedule.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("daemon", help="Run the scheduler in the foreground")

    now_parser = subparsers.add_parser("now", help="Run a backup cycle immediately")
    now_parser.add_argument("--mapping", help="Back up only this mapping id")

    subparsers.add_parser("status", help="Show daemon, repository and mapping status")
    subparsers.add_parser("list", help="List configured mappings")

    add_parser = subparsers.add_parser("add", help="Add a mapping")
    add_parser.add_argument("name", help="Display name")
    add_parser.add_argument("source", help="Absolute local directory to back up")
    add_parser.add_argument(
        "--subdir", default="", help="Target path inside the repository (default: root)"
    )
    add_parser.add_argument(
        "--ignore", nargs="*", default=[], help="Patterns to exclude (e.g. '*.log')"
    )
    add_parser.add_argument(
        "--readme", action="store_true", help="Add a section to the repository README"
    )

    update_parser = subparsers.add_parser("update", help="Update a mapping")
    update_parser.add_argument("id", help="Mapping id")
    update_parser.add_argument("--name")
    update_parser.add_argument("--source")
    update_parser.add_argument("--subdir")
    update_parser.add_argument("--ignore", nargs="*")
    enabled_group = update_parser.add_mutually_exclusive_group()
    enabled_group.add_argument(
        "--enable", dest="enabled", action="store_const", const=True
    )
    enabled_group.add_argument(
        "--disable", dest="enabled", action="store_const", const=False
    )
    readme_group = update_parser.add_mutually_exclusive_group()
    readme_group.add_argument(
        "--readme", dest="readme", action="store_const", const=True
    )
    readme_group.add_argument(
        "--no-readme", dest="readme", action="store_const", const=False
    )

    remove_parser = subparsers.add_parser("remove", help="Remove a mapping")
    remove_parser.add_argument("id", help="Mapping id")

    history_parser = subparsers.add_parser("history", help="Show recent backups")
    history_parser.add_argument("--mapping", help="Only this mapping id")
    history_parser.add_argument(
        "--limit", type=int, default=20, help="Number of entries (default: 20)"
    )

    settings_parser = subparsers.add_parser(
        "settings", help="Show or change global settings"
    )
    settings_parser.add_argument(
        "--ignore", nargs="*", help="Replace the global ignore patterns"
    )
    settings_parser.add_argument(
        "--config-backup-path", help="Repository path for the mapping store mirror"
    )

    config_parser = subparsers.add_parser("config", help="Show effective configuration")
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the git-backup CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return
    if args.command == "daemon":
        daemon.main()
        return
    if args.command == "config" and args.list:
        show_config_reference()
        return

    config = GlobalConfig.load()
    try:
        if args.command == "now":
            run_now(config, args.mapping)
        elif args.command == "status":
            show_status(config)
        elif args.command == "list":
            list_mappings(config)
        elif args.command == "add":
            _add_mapping(config, args)
        elif args.command == "update":
            _update_mapping(config, args)
        elif args.command == "remove":
            _remove_mapping(config, args)
        elif args.command == "history":
            show_history(config, args.mapping, args.limit)
        elif args.command == "settings":
            show_settings(config, args)
        elif args.command == "config":
            show_config(config)
    except (DuplicateSubdirError, MappingNotFoundError, ConfigError, ValueError) as e:
        _fail(str(e))
    except OSError as e:
        _fail(f"Could not access the stores: {e}")


if __name__ == "__main__":
    main()

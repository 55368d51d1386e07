from pathlib import Path
from unittest.mock import MagicMock

from git_backup.models import NO_CHANGE, SUCCESS, CycleResult, HistoryEntry, Mapping
from git_backup.readme import merge_block, render_section, update_readme

START = "<!-- git-backup-start -->"
END = "<!-- git-backup-end -->"


def _mapping(**kwargs: object) -> Mapping:
    data: dict = {
        "id": "m1",
        "name": "web01",
        "source_dir": "/etc/nginx",
        "repo_subdir": "servers/web01",
        "readme_section": True,
    }
    data.update(kwargs)
    return Mapping(**data)


def test_render_section_links_commit() -> None:
    entry = HistoryEntry(
        timestamp="2024-01-01T00:00:00.000Z",
        mapping_id="m1",
        mapping_name="web01",
        commit_sha="abcdef1234567890",
        commit_message="msg",
        files_changed=3,
        commit_url="https://github.com/acme/backups/commit/abcdef1234567890",
    )
    result = CycleResult("m1", "web01", SUCCESS, entry=entry)

    section = render_section(_mapping(), result, "Reverse proxy configuration.")

    assert section.startswith("### web01\n")
    assert "- **Source:** `/etc/nginx`" in section
    assert "- **Path:** `servers/web01`" in section
    assert (
        "[abcdef1](https://github.com/acme/backups/commit/abcdef1234567890)"
        " (3 files changed)" in section
    )
    assert section.endswith("Reverse proxy configuration.")


def test_render_section_root_and_no_change() -> None:
    result = CycleResult("m1", "web01", NO_CHANGE)
    section = render_section(_mapping(repo_subdir=""), result, None)

    assert "- **Path:** `.`" in section
    assert "no changes detected" in section


def test_merge_block_replaces_in_place() -> None:
    """Verifies that text around an existing block survives regeneration."""
    content = f"# Backups\n\nIntro.\n\n{START}\nold\n{END}\n\nFooter.\n"

    merged = merge_block(content, ["### new"])

    assert merged.startswith("# Backups\n\nIntro.\n\n")
    assert merged.endswith("\n\nFooter.\n")
    assert "old" not in merged
    assert merged.count(START) == 1
    assert "## Backup Contents\n\n### new\n" + END in merged


def test_merge_block_appends_or_creates() -> None:
    assert merge_block("# Backups\n", ["### a"]).startswith("# Backups\n\n" + START)
    assert merge_block("", ["### a"]).startswith(START)


def test_update_readme_only_for_opted_in(tmp_path: Path) -> None:
    generator = MagicMock()
    generator.describe_directory.side_effect = RuntimeError("tool missing")
    readme = tmp_path / "README.md"

    written = update_readme(
        readme, tmp_path, [_mapping(readme_section=False)], [], generator, 60
    )
    assert written is False
    assert not readme.exists()

    written = update_readme(readme, tmp_path, [_mapping()], [], generator, 60)

    assert written is True
    assert "### web01" in readme.read_text()
    generator.describe_directory.assert_called_once_with(
        tmp_path / "servers/web01", 60
    )

"""Generated "Backup Contents" block in the repository README."""

import logging
from pathlib import Path

from .commit import CommitMessageGenerator
from .constants import APP_NAME, README_END_MARKER, README_START_MARKER
from .models import NO_CHANGE, SUCCESS, CycleResult, Mapping

logger = logging.getLogger(APP_NAME)


def _status_line(result: CycleResult | None) -> str:
    if result is None:
        return ""
    if result.status == SUCCESS and result.entry:
        entry = result.entry
        short = entry.commit_sha[:7]
        ref = f"[{short}]({entry.commit_url})" if entry.commit_url else short
        return f"Last backup: {ref} ({entry.files_changed} files changed)"
    if result.status == NO_CHANGE:
        return "Last backup: no changes detected"
    return ""


def render_section(
    mapping: Mapping, result: CycleResult | None, description: str | None
) -> str:
    """Renders the Markdown section for a single mapping."""
    lines = [
        f"### {mapping.name}",
        "",
        f"- **Source:** `{mapping.source_dir}`",
        f"- **Path:** `{mapping.repo_subdir or '.'}`",
    ]
    if status := _status_line(result):
        lines.append(f"- {status}")
    if description:
        lines.extend(["", description])
    return "\n".join(lines)


def merge_block(content: str, sections: list[str]) -> str:
    """Replaces the managed block in `content`, or appends one if absent."""
    block = (
        f"{README_START_MARKER}\n## Backup Contents\n\n"
        + "\n\n".join(sections)
        + f"\n{README_END_MARKER}"
    )

    start = content.find(README_START_MARKER)
    end = content.find(README_END_MARKER)
    if start != -1 and end > start:
        return content[:start] + block + content[end + len(README_END_MARKER) :]
    if content.strip():
        return content.rstrip() + "\n\n" + block + "\n"
    return block + "\n"


def update_readme(
    readme_path: Path,
    repo_root: Path,
    mappings: list[Mapping],
    results: list[CycleResult],
    generator: CommitMessageGenerator,
    describe_timeout: int,
) -> bool:
    """Regenerates the README sections of the mappings that opted in.

    Args:
        readme_path (Path): The README inside the working copy.
        repo_root (Path): The working copy root.
        mappings (list[Mapping]): Mappings of this cycle.
        results (list[CycleResult]): This cycle's results, for status lines.
        generator (CommitMessageGenerator): Source of directory descriptions.
        describe_timeout (int): Seconds allowed per description.

    Returns:
        bool: True if the README was written.
    """
    opted_in = [m for m in mappings if m.readme_section]
    if not opted_in:
        return False

    by_id = {r.mapping_id: r for r in results}
    sections = []
    for mapping in opted_in:
        target = repo_root / mapping.repo_subdir if mapping.repo_subdir else repo_root
        description = None
        try:
            logger.info(f"README {mapping.name}: Generating description...")
            description = generator.describe_directory(target, describe_timeout)
        except Exception as e:
            logger.info(f"README {mapping.name}: Description unavailable ({e}).")
        sections.append(render_section(mapping, by_id.get(mapping.id), description))

    content = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""
    readme_path.write_text(merge_block(content, sections), encoding="utf-8")
    logger.info(f"README: Updated {len(opted_in)} mapping sections.")
    return True

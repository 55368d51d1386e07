"""Append-only, size-capped log of completed backups (newest first)."""

import logging
from pathlib import Path

from .constants import APP_NAME, MAX_HISTORY_ENTRIES
from .models import HistoryEntry
from .storage import read_json, write_json_atomic

logger = logging.getLogger(APP_NAME)


class HistoryStore:
    """JSON-backed history of successful mapping commits.

    Entries are prepended, so index 0 is always the most recent one. Once
    the store holds `max_entries` entries, each append evicts the oldest.

    Attributes:
        path (Path): The history file.
        max_entries (int): Retention cap.
    """

    def __init__(self, path: Path, max_entries: int = MAX_HISTORY_ENTRIES):
        self.path = path
        self.max_entries = max_entries

    def _read(self) -> list[dict]:
        try:
            data = read_json(self.path, [])
        except (OSError, ValueError) as e:
            logger.error(f"ERROR: History file {self.path} is unreadable: {e}")
            return []
        return data if isinstance(data, list) else []

    def append(self, entry: HistoryEntry) -> None:
        """Records one entry, evicting the oldest beyond the cap."""
        entries = self._read()
        entries.insert(0, entry.to_dict())
        del entries[self.max_entries :]
        write_json_atomic(self.path, entries)

    def query(
        self, mapping_id: str | None = None, limit: int | None = None
    ) -> list[HistoryEntry]:
        """Returns entries newest-first.

        Args:
            mapping_id (str | None): Only entries for this mapping.
            limit (int | None): At most this many of the most recent entries.

        Returns:
            list[HistoryEntry]: The matching entries.
        """
        entries = [HistoryEntry.from_dict(e) for e in self._read()]
        if mapping_id:
            entries = [e for e in entries if e.mapping_id == mapping_id]
        if limit:
            entries = entries[:limit]
        return entries

    def latest_for_mapping(self, mapping_id: str) -> HistoryEntry | None:
        """The most recent entry for a mapping, or None if it has never committed."""
        for raw in self._read():
            if raw.get("mapping_id") == mapping_id:
                return HistoryEntry.from_dict(raw)
        return None

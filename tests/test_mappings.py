"""Tests for the mapping and settings store."""

import json
from pathlib import Path

import pytest

from git_backup.config import ConfigError
from git_backup.mappings import (
    DuplicateSubdirError,
    MappingNotFoundError,
    MappingStore,
)


@pytest.fixture
def store(tmp_path: Path) -> MappingStore:
    return MappingStore(tmp_path / "config.json", legacy_source_dir="/srv/legacy")


def test_missing_store_synthesizes_legacy_mapping(store: MappingStore) -> None:
    """Verifies the single default mapping built from BACKUP_DIR/REPO_SUBDIR."""
    mappings = store.list_mappings()

    assert not store.exists()
    assert len(mappings) == 1
    assert mappings[0].id == "legacy"
    assert mappings[0].source_dir == "/srv/legacy"
    assert mappings[0].repo_subdir == ""
    assert mappings[0].enabled is True


def test_add_persists_with_generated_id(store: MappingStore) -> None:
    mapping = store.add_mapping("web01", "/etc/nginx", "servers/web01", ["*.log"])

    assert len(mapping.id) == 12
    assert mapping.enabled is True
    assert store.exists()

    data = json.loads(store.path.read_text())
    stored = data["mappings"][-1]
    assert stored["id"] == mapping.id
    assert stored["source_dir"] == "/etc/nginx"
    assert stored["repo_subdir"] == "servers/web01"
    assert stored["ignore_patterns"] == ["*.log"]
    assert not store.path.with_name("config.json.tmp").exists()


def test_ids_are_unique(store: MappingStore) -> None:
    ids = {store.add_mapping(f"m{i}", f"/src/{i}", f"dst/{i}").id for i in range(20)}
    assert len(ids) == 20


def test_duplicate_subdir_is_rejected_and_file_untouched(store: MappingStore) -> None:
    """Verifies that a rejected add leaves the store byte-for-byte unchanged."""
    store.add_mapping("first", "/a", "shared")
    before = store.path.read_bytes()

    with pytest.raises(DuplicateSubdirError, match="shared"):
        store.add_mapping("second", "/b", "shared")

    assert store.path.read_bytes() == before


def test_invalid_source_dir_is_rejected(store: MappingStore) -> None:
    with pytest.raises(ConfigError, match="Invalid path"):
        store.add_mapping("bad", "/tmp/x; rm -rf /", "bad")
    assert not store.exists()


def test_update_merges_fields(store: MappingStore) -> None:
    mapping = store.add_mapping("web01", "/etc/nginx", "servers/web01")

    updated = store.update_mapping(
        mapping.id, enabled=False, ignore_patterns=["*.bak"], id="hijack", bogus=1
    )

    assert updated.id == mapping.id
    assert updated.enabled is False
    assert updated.ignore_patterns == ["*.bak"]
    assert updated.name == "web01"
    assert store.get_mapping(mapping.id).enabled is False


def test_update_to_taken_subdir_fails(store: MappingStore) -> None:
    store.add_mapping("a", "/a", "one")
    b = store.add_mapping("b", "/b", "two")

    with pytest.raises(DuplicateSubdirError):
        store.update_mapping(b.id, repo_subdir="one")

    # Keeping its own subdir is not a conflict.
    assert store.update_mapping(b.id, repo_subdir="two", name="bee").name == "bee"


@pytest.mark.parametrize(
    "first, second", [("servers/web01", "servers/web01/"), ("", "/")]
)
def test_subdirs_differing_only_by_slashes_collide(
    store: MappingStore, first: str, second: str
) -> None:
    """Verifies that slash variants of one target directory count as duplicates."""
    store.delete_mapping("legacy")
    store.add_mapping("a", "/a", first)

    with pytest.raises(DuplicateSubdirError):
        store.add_mapping("b", "/b", second)

    other = store.add_mapping("c", "/c", "/elsewhere/")
    assert other.repo_subdir == "elsewhere"
    with pytest.raises(DuplicateSubdirError):
        store.update_mapping(other.id, repo_subdir=second)


def test_unknown_id_raises(store: MappingStore) -> None:
    store.add_mapping("a", "/a", "one")
    with pytest.raises(MappingNotFoundError):
        store.update_mapping("nope", name="x")
    with pytest.raises(MappingNotFoundError):
        store.delete_mapping("nope")
    with pytest.raises(MappingNotFoundError):
        store.get_mapping("nope")


def test_delete(store: MappingStore) -> None:
    a = store.add_mapping("a", "/a", "one")
    b = store.add_mapping("b", "/b", "two")

    store.delete_mapping(a.id)

    assert [m.id for m in store.list_mappings()] == ["legacy", b.id]


def test_settings_round_trip(store: MappingStore) -> None:
    assert store.get_settings().global_ignore_patterns == []

    store.update_settings(global_ignore_patterns=["node_modules"])
    settings = store.update_settings(config_backup_path="meta/config.json")

    assert settings.global_ignore_patterns == ["node_modules"]
    assert settings.config_backup_path == "meta/config.json"

    with pytest.raises(ValueError, match="Unknown settings"):
        store.update_settings(colour="blue")


def test_import_file_requires_mappings_list(
    store: MappingStore, tmp_path: Path
) -> None:
    not_a_store = tmp_path / "package.json"
    not_a_store.write_text('{"name": "x"}')
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    good = tmp_path / "backup-config.json"
    good.write_text(
        json.dumps({"mappings": [{"id": "abc", "name": "x", "source_dir": "/x"}]})
    )

    assert store.import_file(not_a_store) is False
    assert store.import_file(broken) is False
    assert store.import_file(good) is True
    assert [m.id for m in store.list_mappings()] == ["abc"]

"""Tests for RestoreEngine — reconciling the live tree to a version."""

from __future__ import annotations

import pytest

from demovault.exceptions import InvalidVersionStateError, VersionNotFoundError
from demovault.types import VersionAction


def live_paths(vault) -> set[str]:
    return vault.snapshots.capture_full_snapshot().relative_paths()


# ---------------------------------------------------------------------------
# Core scenarios
# ---------------------------------------------------------------------------


class TestDeleteThenRestore:
    def test_recreates_directory_and_file(self, vault, make_tree, root):
        make_tree({"D/f.txt": "hello"})
        deleted = vault.delete_directory("D")
        assert not (root / "D").exists()

        outcome = vault.restorer.restore(deleted.version_id)

        assert (root / "D" / "f.txt").read_text() == "hello"
        assert "Created directory: D" in outcome.restored_items
        assert "Restored file: D/f.txt" in outcome.restored_items
        assert outcome.errors == []

    def test_second_restore_is_a_no_op(self, vault, make_tree):
        make_tree({"D/f.txt": "hello", "D/css/site.css": "body {}"})
        deleted = vault.delete_directory("D")

        vault.restorer.restore(deleted.version_id)
        again = vault.restorer.restore(deleted.version_id)

        assert again.restored_items == []
        assert again.errors == []

    def test_missing_backup_becomes_placeholder(self, vault, make_tree, root, config):
        make_tree({"D/f.txt": "hello", "D/g.txt": "lost"})
        deleted = vault.delete_directory("D")
        (config.backup_root / deleted.version_id / "D" / "g.txt").unlink()

        outcome = vault.restorer.restore(deleted.version_id)

        assert (root / "D" / "f.txt").read_text() == "hello"
        assert (root / "D" / "g.txt").read_bytes() == b""
        assert "Created placeholder: D/g.txt" in outcome.restored_items
        assert "Restored directory contents: D" in outcome.restored_items

    def test_non_ascii_paths_round_trip(self, vault, make_tree, root):
        make_tree({"演示/演.txt": "第一".encode(), "演示/子/示.txt": "第二".encode()})
        deleted = vault.delete_directory("演示")

        vault.restorer.restore(deleted.version_id)

        assert (root / "演示" / "演.txt").read_bytes() == "第一".encode()
        assert (root / "演示" / "子" / "示.txt").read_bytes() == "第二".encode()


class TestUploadThenRestore:
    def test_recovers_deleted_upload(self, vault, root):
        vault.create_directory(None, "T")
        uploaded = vault.upload_files("T", [("g.txt", b"world")])
        (root / "T" / "g.txt").unlink()

        outcome = vault.restorer.restore(uploaded.version_id)

        assert (root / "T" / "g.txt").read_text() == "world"
        assert "Restored file: T/g.txt" in outcome.restored_items

    def test_recovers_overwritten_content(self, vault, root):
        vault.create_directory(None, "T")
        uploaded = vault.upload_files("T", [("g.txt", b"world")])
        (root / "T" / "g.txt").write_text("changed")

        vault.restorer.restore(uploaded.version_id)

        assert (root / "T" / "g.txt").read_text() == "world"

    def test_colliding_upload_restores_where_it_landed(self, vault, make_tree, root):
        make_tree({"X/g.txt": "old"})
        uploaded = vault.upload_files("X", [("g.txt", b"world")])

        first = vault.restorer.restore(uploaded.version_id)
        second = vault.restorer.restore(uploaded.version_id)

        assert first.restored_items == []
        assert second.restored_items == []
        assert (root / "X" / "g.txt").read_text() == "old"

        (root / "X" / "g_1.txt").unlink()
        outcome = vault.restorer.restore(uploaded.version_id)

        assert outcome.restored_items == ["Restored file: X/g_1.txt"]
        assert (root / "X" / "g_1.txt").read_text() == "world"
        assert (root / "X" / "g.txt").read_text() == "old"

    def test_unchanged_file_not_reported(self, vault):
        vault.create_directory(None, "T")
        uploaded = vault.upload_files("T", [("g.txt", b"world")])
        outcome = vault.restorer.restore(uploaded.version_id)
        assert outcome.restored_items == []


# ---------------------------------------------------------------------------
# Diff behaviour
# ---------------------------------------------------------------------------


class TestReconcile:
    def test_live_tree_matches_snapshot(self, vault, make_tree, root):
        make_tree({"A/index.html": "a", "A/js/app.js": "app", "B/readme.md": "b"})
        created = vault.create_directory("A", "empty")
        target = vault.ledger.get(created.version_id).snapshot.file_system

        make_tree({"A/extra.txt": "x", "C/new/page.html": "p", "B/more.md": "m"})
        vault.create_directory("B", "later")

        vault.restorer.restore(created.version_id)
        assert live_paths(vault) == target.relative_paths()

    def test_removes_directories_and_files_added_later(self, vault, make_tree):
        make_tree({"A/index.html": "a"})
        created = vault.create_directory(None, "B")
        make_tree({"A/extra.txt": "x", "C/nested/deeper/x.txt": "x"})

        outcome = vault.restorer.restore(created.version_id)

        assert "Deleted directory: C" in outcome.restored_items
        assert "Deleted file: A/extra.txt" in outcome.restored_items
        assert not any("C/nested" in item for item in outcome.restored_items)

    def test_recreates_missing_directories_empty(self, vault, make_tree, root):
        make_tree({"A/index.html": "a"})
        created = vault.create_directory("A", "sub")
        (root / "A" / "sub").rmdir()

        outcome = vault.restorer.restore(created.version_id)

        assert (root / "A" / "sub").is_dir()
        assert outcome.restored_items == ["Created directory: A/sub"]

    def test_files_never_backed_up_are_left_alone(self, vault, make_tree, root):
        make_tree({"A/index.html": "original"})
        created = vault.create_directory(None, "B")
        (root / "A" / "index.html").write_text("edited")

        vault.restorer.restore(created.version_id)

        assert (root / "A" / "index.html").read_text() == "edited"

    def test_custom_names_restored(self, vault, make_tree, root):
        make_tree({"A/index.html": "a"})
        vault.set_display_name("A", "Before")
        created = vault.create_directory(None, "B")
        vault.set_display_name("A", "After")

        outcome = vault.restorer.restore(created.version_id)

        assert vault.names.load() == {str(root / "A"): "Before"}
        assert "Restored custom names" in outcome.restored_items


# ---------------------------------------------------------------------------
# Bookkeeping and errors
# ---------------------------------------------------------------------------


class TestBookkeeping:
    def test_restore_is_recorded(self, vault):
        created = vault.create_directory(None, "A")
        outcome = vault.restorer.restore(created.version_id)

        newest = vault.ledger.versions()[0]
        assert newest.id == outcome.restore_version_id
        assert newest.action is VersionAction.RESTORE
        assert newest.details["restored_version_id"] == created.version_id
        assert newest.details["restored_action"] == "create"
        assert newest.restorable

    def test_restore_version_ids_increase(self, vault):
        created = vault.create_directory(None, "A")
        outcome = vault.restorer.restore(created.version_id)
        assert int(outcome.restore_version_id) > int(created.version_id)

    def test_metadata_cache_cleared(self, vault):
        created = vault.create_directory(None, "A")
        vault.list_folders()
        assert len(vault.metadata_cache) > 0
        vault.restorer.restore(created.version_id)
        assert len(vault.metadata_cache) == 0


class TestErrors:
    def test_unknown_version(self, vault):
        with pytest.raises(VersionNotFoundError):
            vault.restorer.restore("404")

    def test_light_delete_not_restorable(self, vault, make_tree, root):
        make_tree({"D/f.txt": "hello"})
        deleted = vault.delete_directory("D", light=True)
        count = vault.ledger.list_versions().total

        with pytest.raises(InvalidVersionStateError):
            vault.restorer.restore(deleted.version_id)

        assert not (root / "D").exists()
        assert vault.ledger.list_versions().total == count

    def test_evicted_backups_are_skipped(self, vault, make_tree, root):
        vault.create_directory(None, "T")
        uploaded = vault.upload_files("T", [("g.txt", b"world")])
        vault.backups.evict(uploaded.version_id)
        (root / "T" / "g.txt").unlink()

        outcome = vault.restorer.restore(uploaded.version_id)

        assert outcome.errors == []
        assert not (root / "T" / "g.txt").exists()

"""Tests for VersionLedger — recording, retention, listing, clearing."""

from __future__ import annotations

import json
import threading

import pytest

from demovault.cache import MetadataCache
from demovault.exceptions import (
    AuthenticationError,
    PathTraversalError,
    StorageError,
    VersionNotFoundError,
)
from demovault.ledger import VersionLedger
from demovault.store import JsonLedgerStore
from demovault.types import UploadedFile, VersionAction


class FailingStore(JsonLedgerStore):
    """JSON store whose appends always fail."""

    def append(self, version):
        raise StorageError("disk full")


def build_ledger(config, paths, names, snapshots, backups, clock, *, store=None, **kwargs):
    return VersionLedger(
        store or JsonLedgerStore(config.ledger_path),
        snapshots,
        backups,
        paths,
        names,
        clear_credential=config.clear_credential,
        clock=clock,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# record_change
# ---------------------------------------------------------------------------


class TestRecordChange:
    def test_create_captures_full_snapshot(self, ledger, make_tree):
        make_tree({"demo/index.html": "x"})
        version = ledger.record_change("create", {"type": "directory", "path": "demo"})

        assert version.action is VersionAction.CREATE
        assert version.id.isdigit()
        assert version.restorable
        assert version.snapshot.file_system.relative_paths() == {"demo", "demo/index.html"}
        assert version.snapshot.file_system.version_id == version.id
        assert version.snapshot.backed_files == []

    def test_id_follows_clock(self, ledger, clock):
        clock.now = 1_700_000_000.5
        assert ledger.record_change("create").id == "1700000000500"

    def test_ids_strictly_increasing_with_frozen_clock(self, ledger):
        ids = [int(ledger.record_change("create").id) for _ in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    def test_ids_never_go_backwards(self, ledger, clock):
        first = int(ledger.record_change("create").id)
        clock.advance(-60)
        assert int(ledger.record_change("create").id) > first

    def test_unknown_action_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.record_change("explode")

    def test_delete_backs_up_before_removal(self, ledger, make_tree, config):
        make_tree({"D/f.txt": "hello", "D/sub/g.txt": "nested"})
        version = ledger.record_change("delete", {"path": "D"})

        assert version.snapshot.directory_snapshot.relative_path == "D"
        backed = {r.relative_path for r in version.snapshot.backed_files}
        assert backed == {"D/f.txt", "D/sub/g.txt"}
        assert (config.backup_root / version.id / "D" / "f.txt").read_text() == "hello"
        assert "D/f.txt" in version.snapshot.file_system.file_map()

    def test_delete_of_missing_directory(self, ledger):
        version = ledger.record_change("delete", {"path": "gone"})
        assert version.snapshot.directory_snapshot is None
        assert version.snapshot.backed_files == []

    def test_delete_outside_root_rejected(self, ledger):
        with pytest.raises(PathTraversalError):
            ledger.record_change("delete", {"path": "../etc"})

    def test_upload_backs_up_files_and_target(self, ledger, make_tree, root):
        make_tree({"T/g.txt": "world", "T/old.txt": "old"})
        version = ledger.record_change(
            "upload",
            {
                "target_path": str(root / "T"),
                "files": [UploadedFile(path=str(root / "T" / "g.txt"), original_name="T/g.txt")],
            },
        )

        backed = [r.relative_path for r in version.snapshot.backed_files]
        assert backed == ["T/g.txt", "T/old.txt"]
        assert version.snapshot.backed_files[0].original_relative_path == "T/g.txt"
        assert version.details["files"] == [
            {"path": str(root / "T" / "g.txt"), "original_name": "T/g.txt", "size": 0}
        ]

    def test_upload_original_name_outside_root_ignored(self, ledger, make_tree, root):
        make_tree({"T/g.txt": "world"})
        version = ledger.record_change(
            "reupload",
            {"files": [{"path": str(root / "T" / "g.txt"), "original_name": "../../g.txt"}]},
        )
        assert version.snapshot.backed_files[0].original_relative_path is None

    def test_upload_to_root_backs_up_only_files(self, ledger, make_tree, root):
        make_tree({"a.txt": "a", "demo/index.html": "x"})
        version = ledger.record_change(
            "upload",
            {"target_path": str(root), "files": [{"path": str(root / "a.txt")}]},
        )
        assert [r.relative_path for r in version.snapshot.backed_files] == ["a.txt"]

    def test_persisted(self, ledger, config):
        version = ledger.record_change("create", {"name": "x"})
        document = json.loads(config.ledger_path.read_text(encoding="utf-8"))
        assert document["versions"][0]["id"] == version.id


class TestRecordDelete:
    def test_light_version_not_restorable(self, ledger, snapshots, names, make_tree, root):
        make_tree({"D/f.txt": "hello"})
        names.set(str(root / "D"), "Demo")
        subtree = snapshots.capture_subtree("D")

        version = ledger.record_delete({"path": str(root / "D")}, subtree)

        assert version.action is VersionAction.DELETE
        assert version.snapshot.file_system is None
        assert not version.restorable
        assert version.snapshot.custom_names == {str(root / "D"): "Demo"}
        assert version.snapshot.directory_snapshot.relative_path == "D"
        assert version.snapshot.backed_files == []
        assert ledger.list_versions().versions[0].has_snapshot is False


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestListVersions:
    def test_page(self, ledger):
        ids = [ledger.record_change("create").id for _ in range(5)]
        page = ledger.list_versions(2)

        assert [v.id for v in page.versions] == ids[::-1][:2]
        assert page.total == 5
        assert page.has_more is True
        assert all(v.has_snapshot for v in page.versions)

    def test_all(self, ledger):
        ledger.record_change("create")
        page = ledger.list_versions()
        assert page.total == 1
        assert page.has_more is False

    def test_empty(self, ledger):
        page = ledger.list_versions(10)
        assert page.versions == []
        assert page.total == 0
        assert page.has_more is False

    def test_get(self, ledger):
        version = ledger.record_change("create")
        assert ledger.get(version.id).id == version.id

    def test_get_unknown(self, ledger):
        with pytest.raises(VersionNotFoundError):
            ledger.get("404")

    def test_reads_are_cached_until_write(
        self, config, paths, names, snapshots, backups, clock
    ):
        store = JsonLedgerStore(config.ledger_path)
        ledger = build_ledger(
            config, paths, names, snapshots, backups, clock,
            store=store, cache=MetadataCache(10.0, clock=clock),
        )
        ledger.record_change("create")
        assert ledger.list_versions().total == 1

        # Written behind the ledger's back: invisible until the cache expires
        store.save(store.load() * 2)
        assert ledger.list_versions().total == 1
        clock.advance(10)
        assert ledger.list_versions().total == 2


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------


class TestRetention:
    def test_101st_version_evicts_oldest(self, ledger, make_tree, root, config):
        make_tree({"T/g.txt": "world"})
        oldest = ledger.record_change(
            "upload", {"files": [{"path": str(root / "T" / "g.txt")}]}
        )
        second = ledger.record_change(
            "upload", {"files": [{"path": str(root / "T" / "g.txt")}]}
        )
        assert (config.backup_root / oldest.id).is_dir()

        for _ in range(99):
            ledger.record_change("create")

        versions = ledger.versions()
        assert len(versions) == 100
        assert oldest.id not in {v.id for v in versions}
        assert not (config.backup_root / oldest.id).exists()
        assert (config.backup_root / second.id / "T" / "g.txt").read_text() == "world"

    def test_small_limit(self, config, paths, names, snapshots, backups, clock):
        ledger = build_ledger(config, paths, names, snapshots, backups, clock, max_versions=3)
        ids = [ledger.record_change("create").id for _ in range(5)]
        assert [v.id for v in ledger.versions()] == ids[::-1][:3]


# ---------------------------------------------------------------------------
# Clear
# ---------------------------------------------------------------------------


class TestClear:
    def test_wrong_credential(self, ledger):
        ledger.record_change("create")
        with pytest.raises(AuthenticationError):
            ledger.clear("wrong")
        assert ledger.list_versions().total == 1

    def test_empty_credential(self, ledger):
        with pytest.raises(AuthenticationError):
            ledger.clear("")

    def test_clear_removes_versions_and_backups(self, ledger, make_tree, root, config):
        make_tree({"T/g.txt": "world", f"{config.backup_dir_name}/orphan/x.txt": "x"})
        ledger.record_change("upload", {"files": [{"path": str(root / "T" / "g.txt")}]})
        ledger.record_change("create")

        assert ledger.clear(config.clear_credential) == 2
        assert ledger.list_versions().total == 0
        assert list(config.backup_root.iterdir()) == []


# ---------------------------------------------------------------------------
# Failure and concurrency
# ---------------------------------------------------------------------------


class TestPersistenceFailure:
    def test_storage_error_propagates_and_drops_backups(
        self, config, paths, names, snapshots, backups, clock, make_tree, root
    ):
        make_tree({"T/g.txt": "world"})
        ledger = build_ledger(
            config, paths, names, snapshots, backups, clock,
            store=FailingStore(config.ledger_path),
        )
        with pytest.raises(StorageError):
            ledger.record_change("upload", {"files": [{"path": str(root / "T" / "g.txt")}]})
        assert backups.list_backup_versions() == []


class TestConcurrency:
    def test_parallel_records_keep_ledger_intact(self, ledger, config, make_tree):
        make_tree({"demo/index.html": "x"})
        errors: list[Exception] = []

        def worker():
            try:
                for _ in range(5):
                    ledger.record_change("create", {"name": "demo"})
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        document = json.loads(config.ledger_path.read_text(encoding="utf-8"))
        ids = [v["id"] for v in document["versions"]]
        assert len(ids) == 40
        assert len(set(ids)) == 40
        assert ids == sorted(ids, key=int, reverse=True)

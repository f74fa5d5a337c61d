"""Tests for manifest history, pruning and rollback."""

import pytest

from bundle_reconciler.history import (
    archive_manifest,
    list_snapshots,
    prune_history,
    restore_snapshot,
)
from bundle_reconciler.manifest import (
    create_manifest,
    detection_snapshot_path,
    load_manifest,
    manifest_path,
    record_file,
    save_manifest,
)


def _save(bundle, prompt_hash):
    manifest = create_manifest(prompt_hash)
    record_file(manifest, "a.txt", prompt_hash)
    save_manifest(bundle, manifest)
    return manifest


class TestArchive:

    def test_no_manifest_is_noop(self, tmp_path):
        assert archive_manifest(tmp_path) is None
        assert list_snapshots(tmp_path) == []

    def test_archive_copies_state(self, tmp_path):
        _save(tmp_path, "v1")
        detection_snapshot_path(tmp_path).write_text('{"backend": "django"}')

        snapshot = archive_manifest(tmp_path)
        assert (snapshot / "manifest.json").read_text() == manifest_path(tmp_path).read_text()
        assert (snapshot / "detected-snapshot.json").exists()

    def test_rapid_archives_unique_and_ordered(self, tmp_path):
        """Snapshots taken in quick succession never collide and sort by creation."""
        snapshots = []
        for i in range(5):
            _save(tmp_path, f"v{i}")
            snapshots.append(archive_manifest(tmp_path))

        assert len({s.name for s in snapshots}) == 5
        assert list_snapshots(tmp_path) == snapshots


class TestPrune:

    def test_history_bound(self, tmp_path):
        """After pruning, at most `keep` snapshots remain, the newest ones."""
        _save(tmp_path, "v")
        created = [archive_manifest(tmp_path) for _ in range(12)]

        removed = prune_history(tmp_path, keep=10)

        assert removed == created[:2]
        assert list_snapshots(tmp_path) == created[2:]

    def test_under_limit_removes_nothing(self, tmp_path):
        _save(tmp_path, "v")
        archive_manifest(tmp_path)
        assert prune_history(tmp_path, keep=10) == []
        assert len(list_snapshots(tmp_path)) == 1

    def test_negative_keep_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            prune_history(tmp_path, keep=-1)


class TestRollback:

    def test_restore_previous_manifest(self, tmp_path):
        _save(tmp_path, "v1")
        snapshot = archive_manifest(tmp_path)
        _save(tmp_path, "v2")

        previous = restore_snapshot(tmp_path, snapshot.name)

        assert load_manifest(tmp_path).prompt_hash == "v1"
        assert previous is not None
        assert "v2" in (previous / "manifest.json").read_text()

    def test_rollback_is_reversible(self, tmp_path):
        """The pre-rollback manifest is itself archived."""
        _save(tmp_path, "v1")
        first = archive_manifest(tmp_path)
        _save(tmp_path, "v2")

        undo = restore_snapshot(tmp_path, first.name)
        restore_snapshot(tmp_path, undo.name)
        assert load_manifest(tmp_path).prompt_hash == "v2"

    def test_detection_snapshot_restored(self, tmp_path):
        _save(tmp_path, "v1")
        detection_snapshot_path(tmp_path).write_text('{"backend": "django"}')
        snapshot = archive_manifest(tmp_path)
        detection_snapshot_path(tmp_path).write_text('{"backend": "rails"}')

        restore_snapshot(tmp_path, snapshot.name)
        assert "django" in detection_snapshot_path(tmp_path).read_text()

    def test_unknown_snapshot(self, tmp_path):
        _save(tmp_path, "v1")
        with pytest.raises(FileNotFoundError):
            restore_snapshot(tmp_path, "1999-01-01T00-00-00-000000")

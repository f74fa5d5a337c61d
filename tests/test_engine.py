"""End-to-end regeneration tests with fake collaborators."""

import json
from datetime import datetime

import pytest

from bundle_reconciler.context import RunContext
from bundle_reconciler.digest import digest_text
from bundle_reconciler.engine import (
    acquire_lock,
    break_lock,
    lock_path,
    plan_update,
    read_lock,
    regenerate,
    staging_path,
)
from bundle_reconciler.history import list_snapshots
from bundle_reconciler.manifest import load_manifest
from bundle_reconciler.resolver import ResolutionPolicy, build_component_scope
from bundle_reconciler.state import FAILED, SUCCEEDED


@pytest.fixture
def bundle(tmp_path):
    return tmp_path / "bundle"


def _ctx(tmp_path, bundle, **kwargs):
    kwargs.setdefault("spec_text", "SPEC")
    kwargs.setdefault("runs_dir", tmp_path / "runs")
    return RunContext(bundle_dir=bundle, **kwargs)


class TestConflictScenario:
    """a.txt generated as H1, edited by the user to H2, regenerated as H3."""

    def _first_run(self, tmp_path, bundle, make_generator, make_validator):
        outcome = regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "H1"}]), make_validator())
        assert outcome.succeeded
        (bundle / "a.txt").write_text("H2")

    def test_default_preserves_user_edit(self, tmp_path, bundle, make_generator, make_validator):
        self._first_run(tmp_path, bundle, make_generator, make_validator)

        outcome = regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "H3"}]), make_validator())

        assert outcome.mode == "update"
        assert (bundle / "a.txt").read_text() == "H2"
        assert (bundle / "a.txt.new").read_text() == "H3"
        entry = load_manifest(bundle).files["a.txt"]
        assert entry.generated_hash == digest_text("H1")
        assert entry.current_hash == digest_text("H2")
        assert entry.user_modified is True
        assert "a.txt.new" not in load_manifest(bundle).files

    def test_force_backs_up_and_overwrites(self, tmp_path, bundle, make_generator, make_validator):
        self._first_run(tmp_path, bundle, make_generator, make_validator)

        ctx = _ctx(tmp_path, bundle, policy=ResolutionPolicy(force_overwrite=True))
        regenerate(ctx, make_generator([{"a.txt": "H3"}]), make_validator())

        assert (bundle / "a.txt.bak").read_text() == "H2"
        assert (bundle / "a.txt").read_text() == "H3"
        entry = load_manifest(bundle).files["a.txt"]
        assert entry.generated_hash == digest_text("H3")
        assert entry.user_modified is False

    def test_update_report_lists_fork(self, tmp_path, bundle, make_generator, make_validator):
        self._first_run(tmp_path, bundle, make_generator, make_validator)

        outcome = regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "H3"}]), make_validator())

        report = outcome.update_report.read_text()
        assert "`a.txt` -> Review `a.txt.new` (diff: `a.txt.diff`)" in report
        assert (bundle / "a.txt.diff").exists()
        assert "UPDATE_REPORT.md" not in load_manifest(bundle).files


class TestNewBundle:

    def test_new_bundle_manifest(self, tmp_path, bundle, make_generator, make_validator):
        generator = make_generator([{
            "README.md": "r",
            "config/detected.json": json.dumps({"backend": "fastapi"}),
        }])
        outcome = regenerate(_ctx(tmp_path, bundle), generator, make_validator())

        assert outcome.mode == "new"
        assert outcome.status == SUCCEEDED
        assert outcome.update_report is None
        manifest = load_manifest(bundle)
        assert manifest.managed_paths() == ["README.md", "config/detected.json"]
        assert manifest.prompt_hash == digest_text("SPEC")
        assert manifest.detection_summary == {"backend": "fastapi"}
        assert (bundle / ".bundle-reconciler" / "detected-snapshot.json").exists()
        assert (bundle / ".bundle-reconciler" / "prompt-version.md").read_text() == "SPEC"

    def test_generator_writes_only_to_staging(self, tmp_path, bundle, make_generator, make_validator):
        generator = make_generator([{"a.txt": "x"}])
        regenerate(_ctx(tmp_path, bundle), generator, make_validator())

        assert generator.calls[0]["writable_root"] == staging_path(bundle.resolve())
        assert not staging_path(bundle).exists()

    def test_run_reports_written(self, tmp_path, bundle, make_generator, make_validator):
        outcome = regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "x"}]), make_validator())

        report = json.loads(outcome.run_report.read_text())
        assert report["status"] == SUCCEEDED
        assert report["attempts"] == 1
        assert report["actions"] == {"a.txt": "create"}
        assert (outcome.run_dir / "validation_report.txt").exists()

    def test_traced_variant(self, tmp_path, bundle, make_generator, make_validator):
        ctx = _ctx(tmp_path, bundle, use_graph=True)
        outcome = regenerate(ctx, make_generator([{"a.txt": "x"}]), make_validator([["e"], []]))
        assert outcome.succeeded
        assert outcome.attempts == 2


class TestFailedRun:
    """Exhausting the ceiling still applies the last attempt safely."""

    def test_last_attempt_applied_and_reported(self, tmp_path, bundle, make_generator, make_validator):
        generator = make_generator([{"first.txt": "1"}, {"last.txt": "2"}])
        ctx = _ctx(tmp_path, bundle, max_attempts=2)

        outcome = regenerate(ctx, generator, make_validator([["MISSING FILE: README.md"]]))

        assert not outcome.succeeded
        assert outcome.status == FAILED
        assert outcome.errors == ["MISSING FILE: README.md"]
        assert len(generator.calls) == 2
        assert (bundle / "last.txt").exists()
        assert not (bundle / "first.txt").exists()
        assert load_manifest(bundle).managed_paths() == ["last.txt"]
        assert staging_path(bundle).exists()

    def test_failed_update_does_not_clobber(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "H1"}]), make_validator())
        (bundle / "a.txt").write_text("H2")

        outcome = regenerate(
            _ctx(tmp_path, bundle, max_attempts=1),
            make_generator([{"a.txt": "H3"}]),
            make_validator([["broken"]]),
        )
        assert not outcome.succeeded
        assert (bundle / "a.txt").read_text() == "H2"
        assert (bundle / "a.txt.new").read_text() == "H3"

    def test_errors_of_every_attempt_kept(self, tmp_path, bundle, make_generator, make_validator):
        validator = make_validator([["MISSING FILE: README.md"], ["INVALID JSON in config/detected.json"]])

        outcome = regenerate(
            _ctx(tmp_path, bundle, max_attempts=2), make_generator([{"a.txt": "x"}]), validator
        )

        assert outcome.errors == ["INVALID JSON in config/detected.json"]
        assert outcome.attempt_errors == [
            (1, ["MISSING FILE: README.md"]),
            (2, ["INVALID JSON in config/detected.json"]),
        ]


class TestManifestRebuild:

    def test_scoped_update_leaves_other_entries(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(
            _ctx(tmp_path, bundle),
            make_generator([{"ci/deploy.yml": "C1", "README.md": "R1"}]),
            make_validator(),
        )
        before = load_manifest(bundle).files["README.md"]

        ctx = _ctx(tmp_path, bundle, policy=ResolutionPolicy(component_scope=build_component_scope(["ci"])))
        outcome = regenerate(
            ctx, make_generator([{"ci/deploy.yml": "C2", "README.md": "R2"}]), make_validator()
        )

        assert (bundle / "README.md").read_text() == "R1"
        assert (bundle / "ci/deploy.yml").read_text() == "C2"
        assert outcome.resolution.untouched == ["README.md"]
        assert load_manifest(bundle).files["README.md"].to_dict() == before.to_dict()

    def test_deleted_file_entry_dropped(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(
            _ctx(tmp_path, bundle), make_generator([{"a.txt": "1", "b.txt": "2"}]), make_validator()
        )
        (bundle / "b.txt").unlink()

        regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "1"}]), make_validator())
        assert load_manifest(bundle).managed_paths() == ["a.txt"]

    def test_idempotent_regeneration(self, tmp_path, bundle, make_generator, make_validator):
        """Same output twice: nothing forked, fingerprints stable."""
        files = {"a.txt": "1", "dir/b.txt": "2"}
        regenerate(_ctx(tmp_path, bundle), make_generator([files]), make_validator())
        first = load_manifest(bundle)

        outcome = regenerate(_ctx(tmp_path, bundle), make_generator([files]), make_validator())
        second = load_manifest(bundle)

        assert outcome.resolution.forked == []
        assert {p: e.generated_hash for p, e in first.files.items()} == \
            {p: e.generated_hash for p, e in second.files.items()}

    def test_history_archived_and_bounded(self, tmp_path, bundle, make_generator, make_validator):
        for _ in range(4):
            regenerate(
                _ctx(tmp_path, bundle, history_keep=2), make_generator([{"a.txt": "x"}]), make_validator()
            )
        assert len(list_snapshots(bundle)) == 2


class TestLock:

    def test_locked_bundle_rejected(self, tmp_path, bundle, make_generator, make_validator):
        bundle.mkdir()
        acquire_lock(bundle)
        generator = make_generator([{"a.txt": "x"}])

        with pytest.raises(RuntimeError, match="locked"):
            regenerate(_ctx(tmp_path, bundle), generator, make_validator())
        assert generator.calls == []
        assert lock_path(bundle).exists()

    def test_lock_released_after_run(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(_ctx(tmp_path, bundle), make_generator([{"a.txt": "x"}]), make_validator())
        assert read_lock(bundle) is None

    def test_lock_released_on_error(self, tmp_path, bundle, make_validator):
        class ExplodingGenerator:
            def generate(self, *args, **kwargs):
                raise OSError("disk full")

        with pytest.raises(OSError):
            regenerate(_ctx(tmp_path, bundle), ExplodingGenerator(), make_validator())
        assert not lock_path(bundle).exists()

    def test_break_lock(self, tmp_path, bundle):
        bundle.mkdir()
        acquire_lock(bundle)
        assert read_lock(bundle)["pid"]
        assert break_lock(bundle) is True
        assert break_lock(bundle) is False


class TestDryRun:

    def test_plan_update(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(
            _ctx(tmp_path, bundle), make_generator([{"a.txt": "1", "b.txt": "2"}]), make_validator()
        )
        (bundle / "b.txt").write_text("edited")

        plan = plan_update(bundle, "SPEC", ResolutionPolicy())
        assert plan["actions"] == {"a.txt": "overwrite", "b.txt": "write_new"}
        assert plan["analysis"]["user_modified_files"] == ["b.txt"]
        assert not (bundle / "a.txt.new").exists()


class TestDetectionSummary:
    """The detection summary reflects what the generator discovered this run."""

    def _detected(self, facts):
        return {"config/detected.json": json.dumps(facts)}

    def test_edited_detection_file(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(_ctx(tmp_path, bundle), make_generator([self._detected({"backend": "django"})]), make_validator())
        (bundle / "config/detected.json").write_text(json.dumps({"backend": "django", "note": "mine"}))

        outcome = regenerate(
            _ctx(tmp_path, bundle), make_generator([self._detected({"backend": "fastapi"})]), make_validator()
        )

        assert outcome.resolution.forked == ["config/detected.json"]
        assert outcome.detection_changes.changed_keys == ["backend"]
        assert load_manifest(bundle).detection_summary == {"backend": "fastapi"}
        snapshot = bundle / ".bundle-reconciler" / "detected-snapshot.json"
        assert json.loads(snapshot.read_text()) == {"backend": "fastapi"}

    def test_detection_file_out_of_scope(self, tmp_path, bundle, make_generator, make_validator):
        regenerate(_ctx(tmp_path, bundle), make_generator([self._detected({"database": "none"})]), make_validator())

        ctx = _ctx(tmp_path, bundle, policy=ResolutionPolicy(component_scope=build_component_scope(["ci"])))
        outcome = regenerate(ctx, make_generator([self._detected({"database": "postgres"})]), make_validator())

        assert outcome.resolution.untouched == ["config/detected.json"]
        assert json.loads((bundle / "config/detected.json").read_text()) == {"database": "none"}
        assert outcome.detection_changes.changed_keys == ["database"]
        assert load_manifest(bundle).detection_summary == {"database": "postgres"}


class TestRunContext:

    def test_run_dirs_distinct_within_one_second(self, tmp_path, bundle):
        first = _ctx(tmp_path, bundle, started_at=datetime(2026, 1, 2, 3, 4, 5, 100))
        second = _ctx(tmp_path, bundle, started_at=datetime(2026, 1, 2, 3, 4, 5, 200))

        assert first.run_dir != second.run_dir
        assert first.run_dir.parent == tmp_path / "runs" / "bundle"

"""Regeneration engine: one locked pass from change detection to reports.

    lock -> load manifest -> detect drift -> archive -> generate/validate loop
         -> apply staged output -> rebuild manifest -> snapshots -> prune
         -> reports -> unlock

The generator only ever writes into a staging directory. Its last attempt
is applied to the bundle through the conflict resolver whether or not
validation passed, so user edits are never overwritten silently.
"""

import copy
import json
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from bundle_reconciler.constants import (
    DETECTION_SOURCE,
    LOCK_FILENAME,
    MANIFEST_DIR_NAME,
    MANIFEST_SCHEMA_VERSION,
    STAGING_DIR_NAME,
    UPDATE_REPORT_FILENAME,
    VCS_DIR_NAMES,
)
from bundle_reconciler.context import RunContext
from bundle_reconciler.detection import (
    DetectionChanges,
    compare_detections,
    determine_regeneration_scope,
    load_detection_summary,
    save_detection_snapshot,
)
from bundle_reconciler.detector import UpdateAnalysis, analyze_update, refresh_manifest
from bundle_reconciler.digest import ABSENT, digest_text
from bundle_reconciler.generator import Generator
from bundle_reconciler.history import archive_manifest, prune_history
from bundle_reconciler.manifest import (
    Manifest,
    create_manifest,
    detection_snapshot_path,
    get_app_repo_commit,
    init_manifest_dir,
    load_manifest,
    manifest_dir,
    save_manifest,
    save_prompt_snapshot,
    utc_now,
)
from bundle_reconciler.orchestrator import run_regeneration_loop
from bundle_reconciler.prompts import build_generation_prompt
from bundle_reconciler.regeneration_graph import run_regeneration_graph
from bundle_reconciler.report import (
    generate_update_report,
    write_run_report,
    write_validation_report,
)
from bundle_reconciler.resolver import (
    ResolutionPolicy,
    ResolutionReport,
    apply_staged_output,
    plan_actions,
)
from bundle_reconciler.state import RegenerationState
from bundle_reconciler.validator import Validator

# Staged paths that are reconciler state, never bundle content
RESERVED_PREFIXES = (
    f"{MANIFEST_DIR_NAME}/",
    *(f"{name}/" for name in VCS_DIR_NAMES),
    UPDATE_REPORT_FILENAME,
)


@dataclass
class RegenerationOutcome:
    """Result of one regeneration pass."""
    succeeded: bool
    status: str
    mode: str
    attempts: int
    errors: List[str]
    manifest: Manifest
    resolution: ResolutionReport
    analysis: UpdateAnalysis
    detection_changes: DetectionChanges
    run_dir: Path
    run_report: Optional[Path] = None
    update_report: Optional[Path] = None
    affected_components: List[str] = field(default_factory=list)
    # Findings of every failed attempt, oldest first: [(attempt, [errors])]
    attempt_errors: List[Tuple[int, List[str]]] = field(default_factory=list)


# --- Lock ---

def lock_path(bundle_dir: Path) -> Path:
    return manifest_dir(bundle_dir) / LOCK_FILENAME


def read_lock(bundle_dir: Path) -> Optional[Dict[str, Any]]:
    """Lock holder info, or None when the bundle is not locked."""
    path = lock_path(bundle_dir)
    if not path.is_file():
        return None
    try:
        return json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        return {"held_since": "unknown", "pid": None}


def acquire_lock(bundle_dir: Path) -> Path:
    """
    Take the bundle's advisory lock.

    Raises:
        RuntimeError: If another run holds the lock
    """
    path = lock_path(bundle_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        holder = read_lock(bundle_dir) or {}
        raise RuntimeError(
            f"Bundle is locked by another run (pid {holder.get('pid')}, "
            f"since {holder.get('held_since')}). "
            f"If no run is active, remove it with 'bundle unlock {bundle_dir}'."
        )
    with os.fdopen(fd, "w") as f:
        json.dump({"held_since": utc_now(), "pid": os.getpid()}, f)
    return path


def release_lock(bundle_dir: Path) -> None:
    path = lock_path(bundle_dir)
    if path.exists():
        path.unlink()


def break_lock(bundle_dir: Path) -> bool:
    """Remove a lock left behind by a crashed run. Returns True if one existed."""
    path = lock_path(bundle_dir)
    if not path.exists():
        return False
    path.unlink()
    return True


# --- Staging ---

def staging_path(bundle_dir: Path) -> Path:
    return manifest_dir(bundle_dir) / STAGING_DIR_NAME


def reset_staging(bundle_dir: Path) -> Path:
    """Return an empty staging directory, removing leftovers from a failed run."""
    path = staging_path(bundle_dir)
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


# --- Manifest rebuild ---

def rebuild_manifest(
    bundle_dir: Path,
    applied: Manifest,
    previous: Optional[Manifest],
    policy: ResolutionPolicy,
) -> Manifest:
    """
    Reconcile the manifest with what is on disk after output was applied.

    Out-of-scope entries are carried over from the previous manifest
    exactly as they were. In-scope entries get fresh fingerprints, and
    those whose file no longer exists are dropped.
    """
    rebuilt = refresh_manifest(bundle_dir, applied)

    for rel_path in list(rebuilt.files):
        if not policy.in_scope(rel_path):
            if previous is not None and rel_path in previous.files:
                rebuilt.files[rel_path] = copy.deepcopy(previous.files[rel_path])
            continue
        if rebuilt.files[rel_path].current_hash == ABSENT:
            del rebuilt.files[rel_path]

    return rebuilt


# --- Regeneration ---

def regenerate(
    ctx: RunContext,
    generator: Generator,
    validator: Validator,
) -> RegenerationOutcome:
    """
    Run one full regeneration pass over a bundle.

    The mode is "new" when the bundle has no readable manifest and
    "update" otherwise.

    Raises:
        RuntimeError: If the bundle is locked
        ValueError: If max_attempts < 1
    """
    if ctx.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {ctx.max_attempts}")

    bundle_dir = Path(ctx.bundle_dir).resolve()
    bundle_dir.mkdir(parents=True, exist_ok=True)
    init_manifest_dir(bundle_dir)

    acquire_lock(bundle_dir)
    try:
        return _regenerate_locked(ctx, bundle_dir, generator, validator)
    finally:
        release_lock(bundle_dir)


def _regenerate_locked(
    ctx: RunContext,
    bundle_dir: Path,
    generator: Generator,
    validator: Validator,
) -> RegenerationOutcome:
    started = time.monotonic()
    start_time = utc_now()
    run_dir = Path(ctx.run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)

    previous = load_manifest(bundle_dir)
    mode = "update" if previous is not None else "new"
    print(f"Mode: {mode}")

    analysis = analyze_update(bundle_dir, previous, ctx.spec_text)
    if analysis.user_modified_files:
        print(f"User-modified files: {analysis.user_modified_count}")
        for path in analysis.user_modified_files:
            print(f"  - {path}")

    old_detection = load_detection_summary(detection_snapshot_path(bundle_dir))

    snapshot = archive_manifest(bundle_dir)
    if snapshot is not None:
        print(f"Archived manifest to {snapshot}")

    staging = reset_staging(bundle_dir)
    readable_roots = [str(bundle_dir)]
    if ctx.app_repo is not None:
        readable_roots.insert(0, str(Path(ctx.app_repo).resolve()))

    prompt = build_generation_prompt(
        ctx.spec_text,
        writable_root=staging,
        bundle_dir=bundle_dir,
        environments=ctx.environments,
        mode=mode,
        app_repo=ctx.app_repo,
        user_modified=analysis.user_modified_files,
        force_overwrite=ctx.policy.force_overwrite,
        only_components=ctx.only_components,
    )

    state = RegenerationState(
        spec_text=prompt,
        writable_root=str(staging),
        readable_roots=readable_roots,
        environments=list(ctx.environments),
        run_dir=str(run_dir),
        max_attempts=ctx.max_attempts,
    )
    if ctx.use_graph:
        state = run_regeneration_graph(state, generator, validator)
    else:
        state = run_regeneration_loop(state, generator, validator)

    # Apply the last attempt through the resolver, pass or fail
    refreshed = (
        refresh_manifest(bundle_dir, previous)
        if previous is not None
        else create_manifest(digest_text(ctx.spec_text))
    )
    resolution = apply_staged_output(
        bundle_dir, staging, refreshed, ctx.policy, skip=RESERVED_PREFIXES
    )
    for path in resolution.forked:
        print(f"Preserved user-modified {path} (new version in {path}.new)")
    for path in resolution.backed_up:
        print(f"Overwrote {path} (backup in {path}.bak)")

    manifest = rebuild_manifest(bundle_dir, refreshed, previous, ctx.policy)
    manifest.version = MANIFEST_SCHEMA_VERSION
    manifest.generated_at = utc_now()
    manifest.prompt_hash = digest_text(ctx.spec_text)
    manifest.app_repo_commit = get_app_repo_commit(ctx.app_repo)

    # What the generator discovered this run, even when its copy was not applied
    detection_source = staging / DETECTION_SOURCE
    new_detection = load_detection_summary(detection_source)
    detection_changes = compare_detections(old_detection, new_detection)
    if new_detection is not None:
        save_detection_snapshot(bundle_dir, detection_source)
        manifest.detection_summary = new_detection
    affected = determine_regeneration_scope(detection_changes)

    save_prompt_snapshot(bundle_dir, ctx.spec_text)
    save_manifest(bundle_dir, manifest)
    print(f"Manifest saved ({len(manifest.files)} managed files)")

    removed = prune_history(bundle_dir, ctx.history_keep)
    if removed and os.environ.get("BUNDLE_DEBUG"):
        print(f"[DEBUG] pruned {len(removed)} history snapshot(s)")

    update_report = None
    if mode == "update":
        update_report = generate_update_report(
            bundle_dir, analysis, detection_changes, resolution,
            succeeded=state.succeeded, affected_components=affected,
        )

    write_validation_report(run_dir, state.errors, state.attempt)
    run_report = write_run_report(
        run_dir,
        bundle_dir=bundle_dir,
        mode=mode,
        status=state.status,
        attempts=state.attempt,
        max_attempts=state.max_attempts,
        start_time=start_time,
        duration_seconds=time.monotonic() - started,
        errors=state.errors,
        attempt_log=state.attempt_log,
        resolution=resolution,
    )

    if state.succeeded:
        shutil.rmtree(staging)
    else:
        print(f"Last attempt kept for inspection in {staging}")

    return RegenerationOutcome(
        succeeded=state.succeeded,
        status=state.status,
        mode=mode,
        attempts=state.attempt,
        errors=list(state.errors),
        manifest=manifest,
        resolution=resolution,
        analysis=analysis,
        detection_changes=detection_changes,
        run_dir=run_dir,
        run_report=run_report,
        update_report=update_report,
        affected_components=affected,
        attempt_errors=[
            (entry["attempt"], list(entry["errors"]))
            for entry in state.attempt_log
            if entry["errors"]
        ],
    )


def plan_update(
    bundle_dir: Path,
    spec_text: str,
    policy: ResolutionPolicy,
) -> Dict[str, Any]:
    """
    Dry run: what an update would do, without generating or writing anything.

    Returns:
        {"analysis": UpdateAnalysis dict, "actions": {path: action}}.
        Every tracked file is assumed to change.
    """
    manifest = load_manifest(bundle_dir)
    refreshed = refresh_manifest(bundle_dir, manifest) if manifest is not None else None
    return {
        "analysis": analyze_update(bundle_dir, manifest, spec_text).to_dict(),
        "actions": plan_actions(bundle_dir, refreshed, policy),
    }

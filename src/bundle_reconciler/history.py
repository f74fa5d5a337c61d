"""Manifest history: snapshots before every update, pruning, rollback."""

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from bundle_reconciler.constants import (
    DEFAULT_HISTORY_KEEP,
    DETECTION_SNAPSHOT_FILENAME,
    MANIFEST_FILENAME,
    PROMPT_SNAPSHOT_FILENAME,
)
from bundle_reconciler.manifest import (
    atomic_write_text,
    history_dir,
    manifest_dir,
    manifest_path,
    parse_manifest,
)

ARCHIVED_FILES = [MANIFEST_FILENAME, DETECTION_SNAPSHOT_FILENAME, PROMPT_SNAPSHOT_FILENAME]


def _new_snapshot_dir(history: Path) -> Path:
    # Names sort in creation order: microsecond timestamp, then a counter on collision
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
    candidate = history / ts
    n = 1
    while candidate.exists():
        candidate = history / f"{ts}_{n:03d}"
        n += 1
    candidate.mkdir(parents=True)
    return candidate


def archive_manifest(bundle_dir: Path) -> Optional[Path]:
    """
    Copy the live manifest (plus detection and prompt snapshots) into history.

    Returns:
        The new snapshot directory, or None if there is no manifest yet.
    """
    source_dir = manifest_dir(bundle_dir)
    if not manifest_path(bundle_dir).is_file():
        return None

    snapshot = _new_snapshot_dir(history_dir(bundle_dir))
    for name in ARCHIVED_FILES:
        source = source_dir / name
        if source.is_file():
            shutil.copy2(source, snapshot / name)
    return snapshot


def list_snapshots(bundle_dir: Path) -> List[Path]:
    """Snapshot directories, oldest first."""
    history = history_dir(bundle_dir)
    if not history.is_dir():
        return []
    return sorted((p for p in history.iterdir() if p.is_dir()), key=lambda p: p.name)


def prune_history(bundle_dir: Path, keep: int = DEFAULT_HISTORY_KEEP) -> List[Path]:
    """
    Remove the oldest snapshots so that at most `keep` remain.

    Returns:
        The removed snapshot directories.
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")

    snapshots = list_snapshots(bundle_dir)
    excess = len(snapshots) - keep
    if excess <= 0:
        return []

    removed = snapshots[:excess]
    for snapshot in removed:
        shutil.rmtree(snapshot)
    return removed


def restore_snapshot(bundle_dir: Path, name: str) -> Optional[Path]:
    """
    Roll the live manifest back to a snapshot.

    The current manifest is archived first, so a rollback can itself be
    rolled back. Only reconciler state is restored; bundle files are not
    touched (their content was never stored).

    Returns:
        The snapshot directory holding the pre-rollback state (None if
        there was no live manifest).

    Raises:
        FileNotFoundError: If the snapshot does not exist or has no manifest
        ValueError: If the snapshot's manifest is corrupt
    """
    snapshot = history_dir(bundle_dir) / name
    archived_manifest = snapshot / MANIFEST_FILENAME
    if not snapshot.is_dir() or not archived_manifest.is_file():
        raise FileNotFoundError(f"Snapshot not found: {name}")

    content = archived_manifest.read_text(encoding="utf-8")
    parse_manifest(content)

    previous = archive_manifest(bundle_dir)

    atomic_write_text(manifest_path(bundle_dir), content)
    for extra in (DETECTION_SNAPSHOT_FILENAME, PROMPT_SNAPSHOT_FILENAME):
        source = snapshot / extra
        target = manifest_dir(bundle_dir) / extra
        if source.is_file():
            shutil.copy2(source, target)
        elif target.exists():
            target.unlink()

    return previous

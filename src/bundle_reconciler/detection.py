"""Detection-summary documents.

The generator records what it discovered about the app repo (backend,
frontend, database, migrations) in config/detected.json. After each run a
copy is kept in the manifest directory, so the next update can tell which
facts changed and which components they affect.
"""

import json
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from bundle_reconciler.manifest import detection_snapshot_path


COMPARED_KEYS = ["backend", "frontend", "database", "migrations"]

# Which components a changed detection fact invalidates
COMPONENTS_BY_FACT = {
    "backend": ["compose", "dockerfile", "env", "deploy-scripts"],
    "frontend": ["compose", "dockerfile", "env", "caddy"],
    "database": ["compose", "env", "deploy-scripts", "backup-scripts"],
    "migrations": ["deploy-scripts"],
}


@dataclass
class DetectionChanges:
    """Result of comparing two detection summaries."""
    status: str  # no_previous | no_current | changed | unchanged
    changes: List[str] = field(default_factory=list)
    changed_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "changes": self.changes}


def load_detection_summary(path: Path) -> Optional[Dict[str, Any]]:
    """Read a detection summary; None if it is missing or not a JSON object."""
    path = Path(path)
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def save_detection_snapshot(bundle_dir: Path, source: Path) -> Optional[Path]:
    """Copy the generator's detection summary into the manifest directory."""
    source = Path(source)
    if not source.is_file():
        return None
    target = detection_snapshot_path(bundle_dir)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)
    return target


def compare_detections(
    old: Optional[Dict[str, Any]],
    new: Optional[Dict[str, Any]],
) -> DetectionChanges:
    """Compare the facts in two detection summaries."""
    if old is None:
        return DetectionChanges(status="no_previous")
    if new is None:
        return DetectionChanges(status="no_current")

    changes = []
    changed_keys = []
    for key in COMPARED_KEYS:
        old_val = old.get(key, "none")
        new_val = new.get(key, "none")
        if old_val != new_val:
            changes.append(f"{key}: {old_val} -> {new_val}")
            changed_keys.append(key)

    return DetectionChanges(
        status="changed" if changes else "unchanged",
        changes=changes,
        changed_keys=changed_keys,
    )


def determine_regeneration_scope(changes: DetectionChanges) -> List[str]:
    """Components that need regeneration because of detection changes (sorted, unique)."""
    components = set()
    for key in changes.changed_keys:
        components.update(COMPONENTS_BY_FACT.get(key, []))
    return sorted(components)

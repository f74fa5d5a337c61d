"""Reports written after a regeneration.

- UPDATE_REPORT.md in the bundle root (human-facing, update mode only)
- run_report.json and validation_report.txt in the run directory
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from bundle_reconciler.constants import (
    BACKUP_SUFFIX,
    DIFF_SUFFIX,
    HISTORY_DIR_NAME,
    MANIFEST_DIR_NAME,
    NEW_SUFFIX,
    UPDATE_REPORT_FILENAME,
)
from bundle_reconciler.detection import DetectionChanges
from bundle_reconciler.detector import UpdateAnalysis
from bundle_reconciler.manifest import utc_now
from bundle_reconciler.resolver import ResolutionReport

RUN_REPORT_FILENAME = "run_report.json"
VALIDATION_REPORT_FILENAME = "validation_report.txt"


def generate_update_report(
    bundle_dir: Path,
    analysis: UpdateAnalysis,
    detection_changes: DetectionChanges,
    resolution: ResolutionReport,
    succeeded: bool = True,
    affected_components: Optional[List[str]] = None,
) -> Path:
    """
    Write UPDATE_REPORT.md to the bundle root.

    Returns:
        Path to the report
    """
    report_path = Path(bundle_dir) / UPDATE_REPORT_FILENAME

    lines = [
        "# Update Report",
        "",
        f"Generated: {utc_now()}",
        "",
        "## Summary",
        "",
        f"- Validation: {'passed' if succeeded else 'FAILED (last attempt applied)'}",
        f"- Files written: {len(resolution.written)}",
        f"- Files needing manual merge: {len(resolution.forked)}",
        f"- Files backed up: {len(resolution.backed_up)}",
        f"- Files left untouched (out of scope): {len(resolution.untouched)}",
        "",
        "## Detection Changes",
        "",
        "```json",
        json.dumps(detection_changes.to_dict(), indent=2),
        "```",
        "",
    ]
    if affected_components:
        lines.append("Components affected by detection changes: " + ", ".join(affected_components))
        lines.append("")
    lines += [
        "## Analysis",
        "",
        "```json",
        json.dumps(analysis.to_dict(), indent=2),
        "```",
        "",
        "## Files Requiring Manual Merge",
        "",
    ]

    if resolution.forked:
        lines.append("The following files were modified by you and have been preserved.")
        lines.append(f"New versions have been generated alongside with `{NEW_SUFFIX}` extension,")
        lines.append(f"with a unified diff against your version in `{DIFF_SUFFIX}`.")
        lines.append("")
        for path in resolution.forked:
            lines.append(f"- `{path}` -> Review `{path}{NEW_SUFFIX}` (diff: `{path}{DIFF_SUFFIX}`)")
    else:
        lines.append("_No user-modified files detected._")

    if resolution.backed_up:
        lines += ["", "## Overwritten Files", ""]
        lines.append(f"Your versions were saved with `{BACKUP_SUFFIX}` extension before overwriting.")
        lines.append("")
        for path in resolution.backed_up:
            lines.append(f"- `{path}` (backup: `{path}{BACKUP_SUFFIX}`)")

    lines += [
        "",
        "## Next Steps",
        "",
        f"1. Review the `{NEW_SUFFIX}` files listed above",
        "2. Merge changes manually into your modified files",
        f"3. Delete the `{NEW_SUFFIX}` and `{DIFF_SUFFIX}` files after merging",
        "4. Commit the changes:",
        "",
        "```bash",
        "git add -A",
        'git commit -m "chore(infra): update bundle"',
        "```",
        "",
        "## Rollback",
        "",
        "Previous manifest snapshots are stored in:",
        "```",
        f"{MANIFEST_DIR_NAME}/{HISTORY_DIR_NAME}/",
        "```",
        "",
        "Restore one with `bundle rollback <bundle-dir> <snapshot>`.",
        "",
    ]

    report_path.write_text("\n".join(lines))
    return report_path


def write_run_report(
    run_dir: Path,
    *,
    bundle_dir: Path,
    mode: str,
    status: str,
    attempts: int,
    max_attempts: int,
    start_time: str,
    duration_seconds: float,
    errors: List[str],
    attempt_log: List[Dict[str, Any]],
    resolution: Optional[ResolutionReport] = None,
) -> Path:
    """
    Write a structured run report to disk.

    Returns:
        Path to the written report
    """
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    report_path = run_dir / RUN_REPORT_FILENAME

    report = {
        "bundle_dir": str(bundle_dir),
        "mode": mode,
        "status": status,
        "attempts": attempts,
        "max_attempts": max_attempts,
        "start_time": start_time,
        "end_time": utc_now(),
        "duration_seconds": round(duration_seconds, 3),
        "errors": errors,
        "attempt_log": attempt_log,
        "actions": resolution.to_dict() if resolution else {},
    }

    report_path.write_text(json.dumps(report, indent=2))
    return report_path


def write_validation_report(run_dir: Path, errors: List[str], attempts: int) -> Path:
    """Plain-text list of the final attempt's validation findings."""
    run_dir = Path(run_dir)
    run_dir.mkdir(parents=True, exist_ok=True)
    path = run_dir / VALIDATION_REPORT_FILENAME

    lines = [f"Validation after {attempts} attempt(s): {len(errors)} error(s)"]
    lines += [f"- {err}" for err in errors]
    path.write_text("\n".join(lines) + "\n")
    return path

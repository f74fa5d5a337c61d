"""Minimal observation surface over recorded runs.

Read-only. Reads the run_report.json files left in the runs directory.
"""

import json
from pathlib import Path
from typing import Optional

from bundle_reconciler.report import RUN_REPORT_FILENAME
from bundle_reconciler.state import SUCCEEDED


def find_reports(runs_dir: Path, bundle_name: Optional[str] = None) -> list[dict]:
    """Find all run reports, optionally for one bundle (most recent first)."""
    reports = []

    runs_dir = Path(runs_dir)
    if not runs_dir.exists():
        return reports

    pattern = f"{bundle_name}/*/{RUN_REPORT_FILENAME}" if bundle_name else f"*/*/{RUN_REPORT_FILENAME}"
    for f in runs_dir.glob(pattern):
        try:
            data = json.loads(f.read_text())
            data["_report_file"] = str(f)
            reports.append(data)
        except (json.JSONDecodeError, IOError):
            pass

    reports.sort(key=lambda r: r.get("start_time", ""), reverse=True)
    return reports


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"


def print_summary(runs_dir: Path, bundle_name: Optional[str] = None) -> None:
    """Print a human-readable summary of recorded regeneration runs."""
    reports = find_reports(runs_dir, bundle_name)

    print("=" * 60)
    print(f"RUN SUMMARY: {bundle_name or 'all bundles'}")
    print("=" * 60)
    print()

    if not reports:
        print("No run records found.")
        print()
        print(f"Searched: {runs_dir}")
        return

    latest = reports[0]
    actions = latest.get("actions", {})
    forked = sorted(p for p, a in actions.items() if a == "write_new")

    print("LATEST RUN")
    print("-" * 40)
    print(f"  Bundle:      {latest['bundle_dir']}")
    print(f"  Mode:        {latest['mode']}")
    print(f"  Status:      {latest['status']}")
    print(f"  Attempts:    {latest['attempts']}/{latest['max_attempts']}")
    print(f"  Duration:    {format_duration(latest['duration_seconds'])}")
    print(f"  Time:        {latest['start_time'][:19]}")
    print(f"  Files:       {len(actions)} generated, {len(forked)} need manual merge")
    print()

    if latest.get("errors"):
        print("  Errors:")
        for err in latest["errors"][:5]:
            print(f"    {err[:70]}")
        if len(latest["errors"]) > 5:
            print(f"    ... and {len(latest['errors']) - 5} more")
        print()

    if forked:
        print("  Needs manual merge:")
        for path in forked[:5]:
            print(f"    {path}")
        print()

    if len(reports) > 1:
        print("HISTORY")
        print("-" * 40)
        print(f"  Runs:        {len(reports)}")
        for r in reports[:5]:
            status_icon = "+" if r["status"] == SUCCEEDED else "x"
            print(f"    {status_icon} {r['start_time'][:16]} - {r['mode']} - {r['status']}")
        if len(reports) > 5:
            print(f"    ... and {len(reports) - 5} more")
        print()

"""Manifest store: which files the generator produced, and their fingerprints.

The manifest lives at <bundle>/.bundle-reconciler/manifest.json. It is read
once into a typed Manifest, mutated in memory, and written back atomically.
A missing or unreadable manifest means "no prior generation".
"""

import json
import os
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from bundle_reconciler.constants import (
    DETECTION_SNAPSHOT_FILENAME,
    HISTORY_DIR_NAME,
    MANIFEST_DIR_NAME,
    MANIFEST_FILENAME,
    MANIFEST_SCHEMA_VERSION,
    PROMPT_SNAPSHOT_FILENAME,
)
from bundle_reconciler.digest import digest_text


# Only the fields this engine relies on are required; anything else is
# ignored so that older engines keep reading newer manifests.
MANIFEST_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["version", "files"],
    "properties": {
        "version": {"type": "string"},
        "generated_at": {"type": "string"},
        "prompt_hash": {"type": "string"},
        "app_repo_commit": {"type": "string"},
        "detection_summary": {"type": "object"},
        "files": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["generated_hash"],
                "properties": {
                    "generated_hash": {"type": "string"},
                    "current_hash": {"type": "string"},
                    "user_modified": {"type": "boolean"},
                    "last_updated": {"type": "string"},
                },
            },
        },
    },
}


def utc_now() -> str:
    """Current UTC time as YYYY-MM-DDTHH:MM:SSZ."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class ManagedFile:
    """One generated file tracked by the manifest."""
    relative_path: str
    generated_hash: str
    current_hash: str
    user_modified: bool = False
    last_updated: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_hash": self.generated_hash,
            "current_hash": self.current_hash,
            "managed": True,
            "user_modified": self.user_modified,
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, relative_path: str, data: Dict[str, Any]) -> "ManagedFile":
        generated_hash = data["generated_hash"]
        return cls(
            relative_path=relative_path,
            generated_hash=generated_hash,
            current_hash=data.get("current_hash", generated_hash),
            user_modified=bool(data.get("user_modified", False)),
            last_updated=data.get("last_updated", ""),
        )


@dataclass
class Manifest:
    """Aggregate root: run metadata plus every managed file."""
    version: str = MANIFEST_SCHEMA_VERSION
    generated_at: str = ""
    prompt_hash: str = ""
    app_repo_commit: str = "unknown"
    files: Dict[str, ManagedFile] = field(default_factory=dict)
    detection_summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "generated_at": self.generated_at,
            "prompt_hash": self.prompt_hash,
            "app_repo_commit": self.app_repo_commit,
            "files": {
                path: self.files[path].to_dict() for path in sorted(self.files)
            },
            "detection_summary": self.detection_summary,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        return cls(
            version=data.get("version", MANIFEST_SCHEMA_VERSION),
            generated_at=data.get("generated_at", ""),
            prompt_hash=data.get("prompt_hash", ""),
            app_repo_commit=data.get("app_repo_commit", "unknown"),
            files={
                path: ManagedFile.from_dict(path, entry)
                for path, entry in data.get("files", {}).items()
            },
            detection_summary=data.get("detection_summary") or {},
        )

    def managed_paths(self) -> List[str]:
        return sorted(self.files)


# --- Paths ---

def manifest_dir(bundle_dir: Path) -> Path:
    return Path(bundle_dir) / MANIFEST_DIR_NAME


def manifest_path(bundle_dir: Path) -> Path:
    return manifest_dir(bundle_dir) / MANIFEST_FILENAME


def history_dir(bundle_dir: Path) -> Path:
    return manifest_dir(bundle_dir) / HISTORY_DIR_NAME


def has_manifest(bundle_dir: Path) -> bool:
    """Check if bundle has an existing manifest (was previously generated)."""
    return manifest_path(bundle_dir).is_file()


def init_manifest_dir(bundle_dir: Path) -> Path:
    """Create the manifest directory and its history subdirectory."""
    path = manifest_dir(bundle_dir)
    (path / HISTORY_DIR_NAME).mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic writes ---

def atomic_write_text(path: Path, content: str) -> None:
    """Write via a sibling temp file and rename, so readers never see a partial file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


# --- Load / save ---

def parse_manifest(text: str) -> Manifest:
    """
    Parse and schema-check a manifest document.

    Raises:
        ValueError: If the document is not JSON or does not match MANIFEST_SCHEMA
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Manifest is not valid JSON: {e}")

    try:
        jsonschema.validate(instance=data, schema=MANIFEST_SCHEMA)
    except jsonschema.ValidationError as e:
        error_msg = f"Manifest schema error: {e.message}"
        if e.absolute_path:
            error_msg += f" at path: {list(e.absolute_path)}"
        raise ValueError(error_msg)

    return Manifest.from_dict(data)


def load_manifest(bundle_dir: Path) -> Optional[Manifest]:
    """
    Load the bundle manifest.

    Returns:
        The Manifest, or None if there is none. A corrupt manifest is
        reported and treated as absent so the run degrades to a full
        regeneration instead of failing.
    """
    path = manifest_path(bundle_dir)
    if not path.is_file():
        return None

    try:
        return parse_manifest(path.read_text(encoding="utf-8"))
    except (ValueError, OSError) as e:
        print(f"WARNING: ignoring unreadable manifest {path}: {e}")
        return None


def save_manifest(bundle_dir: Path, manifest: Manifest) -> Path:
    """Atomically write the manifest. Returns its path."""
    path = manifest_path(bundle_dir)
    atomic_write_text(path, manifest.to_json())
    return path


def create_manifest(
    prompt_hash: str,
    app_repo_commit: str = "unknown",
    detection_summary: Optional[Dict[str, Any]] = None,
) -> Manifest:
    """Create an empty manifest for a new generation."""
    return Manifest(
        version=MANIFEST_SCHEMA_VERSION,
        generated_at=utc_now(),
        prompt_hash=prompt_hash,
        app_repo_commit=app_repo_commit,
        files={},
        detection_summary=detection_summary or {},
    )


def record_file(manifest: Manifest, relative_path: str, fingerprint: str) -> ManagedFile:
    """Insert or overwrite an entry as freshly generated (not user-modified)."""
    entry = ManagedFile(
        relative_path=relative_path,
        generated_hash=fingerprint,
        current_hash=fingerprint,
        user_modified=False,
        last_updated=utc_now(),
    )
    manifest.files[relative_path] = entry
    return entry


# --- Run metadata ---

def get_app_repo_commit(app_repo: Optional[Path]) -> str:
    """Current HEAD commit of the app repo, or "unknown" if it is not a git repo."""
    if app_repo is None or not (Path(app_repo) / ".git").exists():
        return "unknown"
    try:
        result = subprocess.run(
            ["git", "-C", str(app_repo), "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return "unknown"
    if result.returncode != 0:
        return "unknown"
    return result.stdout.strip() or "unknown"


def save_prompt_snapshot(bundle_dir: Path, spec_text: str) -> Path:
    """Keep a copy of the prompt text used for this generation."""
    path = manifest_dir(bundle_dir) / PROMPT_SNAPSHOT_FILENAME
    atomic_write_text(path, spec_text)
    return path


def has_prompt_changed(bundle_dir: Path, spec_text: str, manifest: Optional[Manifest] = None) -> bool:
    """
    Check whether the prompt differs from the one last generated with.

    Uses the manifest's prompt_hash when available, falling back to the
    saved prompt snapshot. No record at all counts as changed.
    """
    current = digest_text(spec_text)
    if manifest is not None and manifest.prompt_hash:
        return manifest.prompt_hash != current

    saved = manifest_dir(bundle_dir) / PROMPT_SNAPSHOT_FILENAME
    if not saved.is_file():
        return True
    return digest_text(saved.read_text(encoding="utf-8")) != current


def detection_snapshot_path(bundle_dir: Path) -> Path:
    return manifest_dir(bundle_dir) / DETECTION_SNAPSHOT_FILENAME

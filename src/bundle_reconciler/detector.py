"""Change detection: which generated files has a human edited since?"""

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from bundle_reconciler.digest import digest_file
from bundle_reconciler.manifest import Manifest, has_prompt_changed


@dataclass
class UpdateAnalysis:
    """Summary of a bundle's state before an update."""
    bundle_dir: str
    last_generated: str
    prompt_changed: bool
    managed_files_count: int
    user_modified_files: List[str] = field(default_factory=list)

    @property
    def user_modified_count(self) -> int:
        return len(self.user_modified_files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bundle_dir": self.bundle_dir,
            "last_generated": self.last_generated,
            "prompt_changed": self.prompt_changed,
            "managed_files_count": self.managed_files_count,
            "user_modified_count": self.user_modified_count,
            "user_modified_files": self.user_modified_files,
        }


def refresh_manifest(bundle_dir: Path, manifest: Manifest) -> Manifest:
    """
    Recompute current fingerprints and drift flags for every managed file.

    Returns a new Manifest; the input is not modified. A missing file gets
    the ABSENT fingerprint and is therefore drifted. Running this twice
    without filesystem changes gives identical results.
    """
    refreshed = copy.deepcopy(manifest)
    bundle_dir = Path(bundle_dir)

    for rel_path, entry in refreshed.files.items():
        entry.current_hash = digest_file(bundle_dir / rel_path)
        entry.user_modified = entry.current_hash != entry.generated_hash

    return refreshed


def user_modified_files(manifest: Optional[Manifest]) -> List[str]:
    """Drifted paths of an already refreshed manifest, sorted."""
    if manifest is None:
        return []
    return sorted(p for p, entry in manifest.files.items() if entry.user_modified)


def detect_user_modified(bundle_dir: Path, manifest: Optional[Manifest]) -> List[str]:
    """Refresh and list drifted paths in one step."""
    if manifest is None:
        return []
    return user_modified_files(refresh_manifest(bundle_dir, manifest))


def analyze_update(
    bundle_dir: Path,
    manifest: Optional[Manifest],
    spec_text: str,
) -> UpdateAnalysis:
    """
    Analyze a bundle for update requirements.

    Args:
        bundle_dir: The bundle to inspect
        manifest: Its manifest, refreshed or not (refreshed here), or None
        spec_text: The prompt the next generation will use
    """
    if manifest is None:
        return UpdateAnalysis(
            bundle_dir=str(bundle_dir),
            last_generated="",
            prompt_changed=True,
            managed_files_count=0,
        )

    refreshed = refresh_manifest(bundle_dir, manifest)
    return UpdateAnalysis(
        bundle_dir=str(bundle_dir),
        last_generated=refreshed.generated_at,
        prompt_changed=has_prompt_changed(bundle_dir, spec_text, refreshed),
        managed_files_count=len(refreshed.files),
        user_modified_files=user_modified_files(refreshed),
    )

"""Conflict resolution for a regeneration pass.

The generator writes each attempt into a staging directory. Once the retry
loop is over, every staged file is applied to the bundle according to a
ResolutionPolicy:

- outside the component scope: left untouched (no write, no refresh)
- identical to what is on disk: nothing to do, fingerprint recorded
- not on disk and not tracked: created
- tracked and unmodified: overwritten in place
- user-modified, or present but untracked: new version written to
  <path>.new with a unified diff in <path>.diff, original and its manifest
  entry untouched
- user-modified with force_overwrite: original copied to <path>.bak, then
  overwritten

Merging is never attempted; .new files are left for a human.
"""

import difflib
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from bundle_reconciler.constants import BACKUP_SUFFIX, DIFF_SUFFIX, NEW_SUFFIX
from bundle_reconciler.digest import ABSENT, digest_file
from bundle_reconciler.manifest import ManagedFile, Manifest, record_file


# Component name -> path prefixes (relative, POSIX) inside a bundle
# Conflict artifacts are never themselves applied
CONFLICT_SUFFIXES = (NEW_SUFFIX, BACKUP_SUFFIX, DIFF_SUFFIX)

COMPONENT_PREFIXES: Dict[str, List[str]] = {
    "ci": ["ci/"],
    "terraform": ["infra/terraform/"],
    "cloud-init": ["infra/cloud-init/"],
    "compose": ["deploy/compose/"],
    "caddy": ["deploy/compose/Caddyfile"],
    "dockerfile": ["deploy/docker/"],
    "scripts": ["deploy/scripts/"],
    "deploy-scripts": ["deploy/scripts/"],
    "backup-scripts": ["deploy/scripts/backup", "deploy/backup/"],
    "env": ["config/envs/"],
    "config": ["config/"],
    "makefile": ["Makefile"],
    "docs": ["README.md", "docs/"],
}


class Action(str, Enum):
    UNTOUCHED = "untouched"
    UNCHANGED = "unchanged"
    CREATE = "create"
    OVERWRITE = "overwrite"
    WRITE_NEW = "write_new"
    BACKUP_AND_OVERWRITE = "backup_and_overwrite"


@dataclass
class ResolutionPolicy:
    """How a regeneration pass treats existing files."""
    force_overwrite: bool = False
    # Path prefixes; None means every path is in scope
    component_scope: Optional[Tuple[str, ...]] = None

    def in_scope(self, relative_path: str) -> bool:
        if self.component_scope is None:
            return True
        return any(relative_path.startswith(prefix) for prefix in self.component_scope)


@dataclass
class ResolutionReport:
    """What a regeneration pass did to each staged file."""
    actions: Dict[str, Action] = field(default_factory=dict)

    def paths_with(self, *actions: Action) -> List[str]:
        return sorted(p for p, a in self.actions.items() if a in actions)

    @property
    def written(self) -> List[str]:
        """Paths whose bundle content now equals the generated content."""
        return self.paths_with(
            Action.UNCHANGED, Action.CREATE, Action.OVERWRITE, Action.BACKUP_AND_OVERWRITE
        )

    @property
    def forked(self) -> List[str]:
        return self.paths_with(Action.WRITE_NEW)

    @property
    def backed_up(self) -> List[str]:
        return self.paths_with(Action.BACKUP_AND_OVERWRITE)

    @property
    def untouched(self) -> List[str]:
        return self.paths_with(Action.UNTOUCHED)

    def to_dict(self) -> Dict[str, str]:
        return {path: self.actions[path].value for path in sorted(self.actions)}


def load_components(path: Path) -> Dict[str, List[str]]:
    """
    Load a component map from YAML.

    Format:

        components:
          ci: [ci/]
          docs: [README.md, docs/]
    """
    data = yaml.safe_load(Path(path).read_text()) or {}
    components = data.get("components") if isinstance(data, dict) else None
    if not isinstance(components, dict):
        raise ValueError(f"Component file has no 'components' mapping: {path}")

    result = {}
    for name, prefixes in components.items():
        if isinstance(prefixes, str):
            prefixes = [prefixes]
        if not isinstance(prefixes, list) or not all(isinstance(p, str) for p in prefixes):
            raise ValueError(f"Component '{name}' must map to a list of path prefixes")
        result[str(name)] = prefixes
    return result


def build_component_scope(
    names: Optional[Iterable[str]],
    components: Optional[Dict[str, List[str]]] = None,
) -> Optional[Tuple[str, ...]]:
    """
    Turn component names into a tuple of path prefixes.

    Returns None (no restriction) when no names are given.

    Raises:
        ValueError: If any name is not a known component
    """
    if components is None:
        components = COMPONENT_PREFIXES
    if names is None:
        return None
    names = [n.strip() for n in names if n and n.strip()]
    if not names:
        return None

    unknown = [n for n in names if n not in components]
    if unknown:
        raise ValueError(
            f"Unknown component(s): {', '.join(unknown)}. "
            f"Known components: {', '.join(sorted(components))}"
        )

    prefixes = []
    for name in names:
        for prefix in components[name]:
            if prefix not in prefixes:
                prefixes.append(prefix)
    return tuple(prefixes)


def resolve(
    relative_path: str,
    entry: Optional[ManagedFile],
    on_disk_hash: str,
    staged_hash: str,
    policy: ResolutionPolicy,
) -> Action:
    """
    Decide what to do with one generated file.

    Args:
        relative_path: Path of the file inside the bundle
        entry: Its manifest entry (already refreshed by change detection), or None
        on_disk_hash: Fingerprint of the bundle's current file (ABSENT if missing)
        staged_hash: Fingerprint of the newly generated content
        policy: Force flag and component scope
    """
    if not policy.in_scope(relative_path):
        return Action.UNTOUCHED

    if on_disk_hash == staged_hash:
        return Action.UNCHANGED

    if entry is None:
        if on_disk_hash == ABSENT:
            return Action.CREATE
        # Present on disk but never generated: treat as user-created
        modified = True
    else:
        modified = entry.user_modified or on_disk_hash != entry.generated_hash

    if not modified:
        return Action.OVERWRITE
    if policy.force_overwrite:
        return Action.BACKUP_AND_OVERWRITE
    return Action.WRITE_NEW


def iter_staged_files(staging_dir: Path) -> List[str]:
    """Relative POSIX paths of every regular file under the staging directory."""
    staging_dir = Path(staging_dir)
    if not staging_dir.is_dir():
        return []
    return sorted(
        p.relative_to(staging_dir).as_posix()
        for p in staging_dir.rglob("*")
        if p.is_file()
    )


def _copy_into(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def write_update_diff(current: Path, new: Path, target: Path) -> Path:
    """Write a unified diff from the current file to its .new version."""
    def _lines(path: Path) -> List[str]:
        if not path.is_file():
            return []
        return path.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)

    diff = difflib.unified_diff(
        _lines(current),
        _lines(new),
        fromfile=current.name,
        tofile=new.name,
    )
    target.write_text("".join(diff), encoding="utf-8")
    return target


def apply_staged_output(
    bundle_dir: Path,
    staging_dir: Path,
    manifest: Manifest,
    policy: ResolutionPolicy,
    skip: Iterable[str] = (),
) -> ResolutionReport:
    """
    Apply every staged file to the bundle according to the policy.

    Entries for written files are recorded in the manifest; entries for
    untouched and forked files are left exactly as they were.

    Args:
        bundle_dir: The bundle being regenerated
        staging_dir: Where the generator wrote its output
        manifest: Manifest to update in place (refreshed by change detection)
        policy: Force flag and component scope
        skip: Path prefixes that must never be applied (reconciler state)
    """
    bundle_dir = Path(bundle_dir)
    staging_dir = Path(staging_dir)
    skip = tuple(skip)
    report = ResolutionReport()

    for rel_path in iter_staged_files(staging_dir):
        if rel_path.startswith(skip) or rel_path.endswith(CONFLICT_SUFFIXES):
            continue

        staged_file = staging_dir / rel_path
        target = bundle_dir / rel_path
        staged_hash = digest_file(staged_file)
        on_disk_hash = digest_file(target)

        action = resolve(
            rel_path,
            manifest.files.get(rel_path),
            on_disk_hash,
            staged_hash,
            policy,
        )
        report.actions[rel_path] = action

        if action == Action.UNTOUCHED:
            continue

        if action == Action.WRITE_NEW:
            new_file = target.with_name(target.name + NEW_SUFFIX)
            _copy_into(staged_file, new_file)
            write_update_diff(target, new_file, target.with_name(target.name + DIFF_SUFFIX))
            continue

        if action == Action.BACKUP_AND_OVERWRITE and target.is_file():
            _copy_into(target, target.with_name(target.name + BACKUP_SUFFIX))

        if action in (Action.CREATE, Action.OVERWRITE, Action.BACKUP_AND_OVERWRITE):
            _copy_into(staged_file, target)

        record_file(manifest, rel_path, staged_hash)

    return report


def plan_actions(
    bundle_dir: Path,
    manifest: Optional[Manifest],
    policy: ResolutionPolicy,
) -> Dict[str, str]:
    """
    Preview how already-tracked files would be treated if regenerated.

    Used for dry runs, before any generated content exists, so every file
    is assumed to change.
    """
    if manifest is None:
        return {}

    plan = {}
    for rel_path in manifest.managed_paths():
        entry = manifest.files[rel_path]
        on_disk_hash = digest_file(Path(bundle_dir) / rel_path)
        action = resolve(rel_path, entry, on_disk_hash, "<regenerated>", policy)
        plan[rel_path] = action.value
    return plan

"""Structural validation of a generated bundle.

Findings are fed back to the generator verbatim on the next attempt, so
messages name the file and the problem plainly.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from bundle_reconciler.constants import DEFAULT_ENVIRONMENTS


MISSING_FILE = "missing-file"
MALFORMED_DOCUMENT = "malformed-document"
UNBALANCED_MARKUP = "unbalanced-markup"
MISSING_REQUIRED_SECTION = "missing-required-section"
MALFORMED_SCRIPT = "malformed-script"

ERROR_KINDS = (
    MISSING_FILE,
    MALFORMED_DOCUMENT,
    UNBALANCED_MARKUP,
    MISSING_REQUIRED_SECTION,
    MALFORMED_SCRIPT,
)


@dataclass(frozen=True)
class ValidationError:
    """One validator finding. str() is the raw text given to the generator."""
    kind: str
    message: str

    def __post_init__(self):
        if self.kind not in ERROR_KINDS:
            raise ValueError(f"Unknown validation error kind: {self.kind}")

    def __str__(self) -> str:
        return self.message


# Files every bundle must contain
BASE_REQUIRED_FILES = [
    "README.md",
    "Makefile",
    ".gitignore",
    "config/detected.json",
    "config/inputs.example.sh",
    "infra/terraform/modules/hetzner-vps/main.tf",
    "infra/cloud-init/user-data.yaml",
    "deploy/compose/docker-compose.yml",
    "deploy/compose/Caddyfile",
    "deploy/scripts/deploy.sh",
]

# Files required only when their environment is generated
ENV_SPECIFIC_FILES: Dict[str, List[str]] = {
    "dev": [
        "config/envs/dev.env.example",
        "infra/terraform/envs/dev/main.tf",
        "ci/github-actions/workflows/deploy-dev.yml",
    ],
    "staging": [
        "config/envs/staging.env.example",
        "infra/terraform/envs/staging/main.tf",
        "ci/github-actions/workflows/deploy-staging.yml",
    ],
    "prod": [
        "config/envs/prod.env.example",
        "infra/terraform/envs/prod/main.tf",
        "ci/github-actions/workflows/deploy-prod.yml",
    ],
}

REQUIRED_MAKEFILE_TARGETS = ["plan", "apply", "deploy"]

JSON_DOCUMENTS = ["config/detected.json"]
YAML_DOCUMENTS = ["deploy/compose/docker-compose.yml", "infra/cloud-init/user-data.yaml"]
BRACED_DOCUMENTS = ["deploy/compose/Caddyfile"]
SHELL_SCRIPTS = ["deploy/scripts/deploy.sh"]


class Validator(ABC):
    """Interface for bundle validators. Must not modify the directory."""

    @abstractmethod
    def validate(self, root: Path, environments: Optional[List[str]] = None) -> List[ValidationError]:
        """
        Validate a generated tree.

        Args:
            root: Directory the generator wrote into
            environments: Environments the bundle was generated for

        Returns:
            Findings; an empty list means the tree passed
        """
        pass


@dataclass
class ValidationProfile:
    """What a bundle must contain. Defaults describe the standard bundle."""
    required_files: List[str] = field(default_factory=lambda: list(BASE_REQUIRED_FILES))
    env_files: Dict[str, List[str]] = field(
        default_factory=lambda: {env: list(files) for env, files in ENV_SPECIFIC_FILES.items()}
    )
    makefile_targets: List[str] = field(default_factory=lambda: list(REQUIRED_MAKEFILE_TARGETS))
    json_documents: List[str] = field(default_factory=lambda: list(JSON_DOCUMENTS))
    yaml_documents: List[str] = field(default_factory=lambda: list(YAML_DOCUMENTS))
    braced_documents: List[str] = field(default_factory=lambda: list(BRACED_DOCUMENTS))
    shell_scripts: List[str] = field(default_factory=lambda: list(SHELL_SCRIPTS))


def load_validation_profile(path: Path) -> ValidationProfile:
    """
    Load a validation profile from YAML. Missing keys keep their defaults.

    Raises:
        ValueError: If the file is not a YAML mapping or a key has the wrong type
    """
    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Validation profile YAML parse error: {str(e)[:100]}")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Validation profile must be a mapping: {path}")

    profile = ValidationProfile()
    for key in ("required_files", "makefile_targets", "json_documents",
                "yaml_documents", "braced_documents", "shell_scripts"):
        if key in data:
            value = data[key] or []
            if not isinstance(value, list):
                raise ValueError(f"Validation profile key '{key}' must be a list")
            setattr(profile, key, [str(v) for v in value])

    if "env_files" in data:
        env_files = data["env_files"] or {}
        if not isinstance(env_files, dict):
            raise ValueError("Validation profile key 'env_files' must be a mapping")
        profile.env_files = {str(env): [str(f) for f in (files or [])] for env, files in env_files.items()}

    return profile


def build_required_files(
    environments: Optional[List[str]] = None,
    profile: Optional[ValidationProfile] = None,
) -> List[str]:
    """Required files for the given environments (base files first)."""
    if environments is None:
        environments = DEFAULT_ENVIRONMENTS
    if profile is None:
        profile = ValidationProfile()

    required = list(profile.required_files)
    for env, files in profile.env_files.items():
        if env in environments:
            required.extend(files)
    return required


def _count_braces(content: str) -> tuple:
    return content.count("{"), content.count("}")


class BundleValidator(Validator):
    """Checks required files, document syntax, brace balance, Makefile targets and shebangs."""

    def __init__(self, profile: Optional[ValidationProfile] = None):
        self.profile = profile or ValidationProfile()

    def validate(self, root: Path, environments: Optional[List[str]] = None) -> List[ValidationError]:
        root = Path(root)
        profile = self.profile
        errors: List[ValidationError] = []

        for rel_path in build_required_files(environments, profile):
            if not (root / rel_path).is_file():
                errors.append(ValidationError(MISSING_FILE, f"MISSING FILE: {rel_path}"))

        for rel_path in profile.json_documents:
            path = root / rel_path
            if path.is_file():
                try:
                    json.loads(path.read_text(encoding="utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    errors.append(ValidationError(
                        MALFORMED_DOCUMENT, f"INVALID JSON in {rel_path}: {str(e)[:100]}"
                    ))

        for rel_path in profile.yaml_documents:
            path = root / rel_path
            if path.is_file():
                try:
                    yaml.safe_load(path.read_text(encoding="utf-8"))
                except (yaml.YAMLError, UnicodeDecodeError) as e:
                    errors.append(ValidationError(
                        MALFORMED_DOCUMENT, f"INVALID YAML in {rel_path}: {str(e)[:100]}"
                    ))

        for rel_path in profile.braced_documents:
            path = root / rel_path
            if path.is_file():
                opened, closed = _count_braces(path.read_text(encoding="utf-8", errors="replace"))
                if opened != closed:
                    errors.append(ValidationError(
                        UNBALANCED_MARKUP,
                        f"SYNTAX ERROR in {rel_path}: Unbalanced braces ({opened} open, {closed} close)",
                    ))

        makefile = root / "Makefile"
        if makefile.is_file() and profile.makefile_targets:
            lines = makefile.read_text(encoding="utf-8", errors="replace").splitlines()
            for target in profile.makefile_targets:
                if not any(line.startswith(f"{target}:") for line in lines):
                    errors.append(ValidationError(
                        MISSING_REQUIRED_SECTION,
                        f"MAKEFILE MISSING TARGET: '{target}' target not found",
                    ))

        for rel_path in profile.shell_scripts:
            path = root / rel_path
            if path.is_file():
                with open(path, "rb") as f:
                    first_line = f.readline()
                if not first_line.startswith(b"#!"):
                    errors.append(ValidationError(
                        MALFORMED_SCRIPT, f"SCRIPT ERROR: {rel_path} missing shebang line"
                    ))

        return errors

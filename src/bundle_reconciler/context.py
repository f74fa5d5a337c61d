"""Run context: everything one regeneration needs, passed explicitly."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from bundle_reconciler.constants import (
    DEFAULT_ENVIRONMENTS,
    DEFAULT_HISTORY_KEEP,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RUNS_DIR,
    VALID_ENVIRONMENTS,
)
from bundle_reconciler.resolver import ResolutionPolicy


@dataclass
class RunContext:
    bundle_dir: Path
    spec_text: str
    app_repo: Optional[Path] = None
    environments: List[str] = field(default_factory=lambda: list(DEFAULT_ENVIRONMENTS))
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    only_components: List[str] = field(default_factory=list)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    history_keep: int = DEFAULT_HISTORY_KEEP
    runs_dir: Path = Path(DEFAULT_RUNS_DIR)
    use_graph: bool = False
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def run_dir(self) -> Path:
        """Per-run log directory: <runs_dir>/<bundle name>/<timestamp>."""
        ts = self.started_at.strftime("%Y%m%d-%H%M%S-%f")
        return Path(self.runs_dir) / Path(self.bundle_dir).name / ts


def parse_environments(value: Optional[str]) -> List[str]:
    """
    Parse a comma-separated environment list.

    Raises:
        ValueError: On an unknown environment or an empty list
    """
    if value is None:
        return list(DEFAULT_ENVIRONMENTS)

    envs = []
    for env in value.split(","):
        env = env.strip()
        if not env:
            continue
        if env not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"Invalid environment: '{env}'. Valid options: {', '.join(VALID_ENVIRONMENTS)}"
            )
        if env not in envs:
            envs.append(env)

    if not envs:
        raise ValueError("At least one environment is required")
    return envs

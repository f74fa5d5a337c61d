"""State for the generate/validate/retry loop."""

from dataclasses import dataclass, field
from typing import List, Optional

IDLE = "IDLE"
GENERATING = "GENERATING"
VALIDATING = "VALIDATING"
RETRYING = "RETRYING"
SUCCEEDED = "SUCCEEDED"
FAILED = "FAILED"

TERMINAL_STATUSES = (SUCCEEDED, FAILED)


@dataclass
class RegenerationState:
    spec_text: str
    writable_root: str
    readable_roots: List[str] = field(default_factory=list)
    environments: List[str] = field(default_factory=list)
    run_dir: Optional[str] = None
    attempt: int = 0
    max_attempts: int = 3
    status: str = IDLE  # IDLE | GENERATING | VALIDATING | RETRYING | SUCCEEDED | FAILED
    last_exit_code: Optional[int] = None
    errors: List[str] = field(default_factory=list)
    feedback: List[str] = field(default_factory=list)
    attempt_log: List[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES

"""Generator interface and the command-line agent implementation.

The generator is a black box: it gets a prompt and directory roots, writes
files, and returns an exit status. Nothing else about it is relied on.
"""

import os
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from bundle_reconciler.constants import DEFAULT_GENERATOR_CMD


# Exit status reported when the generator executable cannot be started
GENERATOR_NOT_FOUND = 127


class Generator(ABC):
    """Abstract interface for bundle generators."""

    @abstractmethod
    def generate(
        self,
        spec_text: str,
        writable_root: Path,
        readable_roots: List[Path],
        log_path: Optional[Path] = None,
    ) -> int:
        """
        Generate files into writable_root.

        Args:
            spec_text: Full prompt for this attempt
            writable_root: The only directory the generator may modify
            readable_roots: Directories it may read
            log_path: Where to keep the generator's console output, if anywhere

        Returns:
            Process exit status (informational only)
        """
        pass


class CommandGenerator(Generator):
    """Runs a coding-agent CLI non-interactively from inside the writable root.

    The command line is:

        <cmd> --add-dir <root>... --dangerously-skip-permissions [--model M] -p <prompt>
    """

    def __init__(self, cmd: str = DEFAULT_GENERATOR_CMD, model: Optional[str] = None):
        self.cmd = cmd
        self.model = model

    def build_args(self, spec_text: str, writable_root: Path, readable_roots: List[Path]) -> List[str]:
        args = shlex.split(self.cmd)
        for root in [*readable_roots, writable_root]:
            args += ["--add-dir", str(root)]
        args.append("--dangerously-skip-permissions")
        if self.model:
            args += ["--model", self.model]
        args += ["-p", spec_text]
        return args

    def generate(
        self,
        spec_text: str,
        writable_root: Path,
        readable_roots: List[Path],
        log_path: Optional[Path] = None,
    ) -> int:
        args = self.build_args(spec_text, writable_root, readable_roots)

        if os.environ.get("BUNDLE_DEBUG"):
            print(f"[DEBUG] generator={args[0]}, model={self.model}, cwd={writable_root}")

        try:
            result = subprocess.run(
                args,
                cwd=writable_root,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            output = f"Generator not found: {args[0]}\n"
            exit_code = GENERATOR_NOT_FOUND
        else:
            output = result.stdout + result.stderr
            exit_code = result.returncode

        if log_path is not None:
            log_path = Path(log_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text(output)

        return exit_code

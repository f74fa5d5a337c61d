"""Configuration loading for the bundle CLI."""

import os
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from bundle_reconciler.constants import (
    DEFAULT_GENERATOR_CMD,
    DEFAULT_HISTORY_KEEP,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PROMPT_FILE,
    DEFAULT_RUNS_DIR,
)


@dataclass
class Config:
    """Application configuration loaded from environment."""

    generator_cmd: str = DEFAULT_GENERATOR_CMD
    generator_model: Optional[str] = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    history_keep: int = DEFAULT_HISTORY_KEEP
    runs_dir: Path = Path(DEFAULT_RUNS_DIR)
    prompt_file: Path = Path(DEFAULT_PROMPT_FILE)


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


def _positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got: {raw!r}")
    if value < 1:
        raise ConfigError(f"{name} must be at least 1, got: {value}")
    return value


def load_config(require_all: bool = True) -> Config:
    """
    Load configuration from environment variables.

    Environment variables:
        BUNDLE_GENERATOR_CMD   - generator executable (default: claude)
        BUNDLE_GENERATOR_MODEL - model passed to the generator (optional)
        BUNDLE_MAX_ATTEMPTS    - generation attempt ceiling (default: 3)
        BUNDLE_HISTORY_KEEP    - manifest snapshots to keep (default: 10)
        BUNDLE_RUNS_DIR        - directory for run logs (default: ./runs)
        BUNDLE_PROMPT_FILE     - generator prompt (default: prompts/BUNDLE_PROMPT.md)

    Args:
        require_all: If True, raises ConfigError when the generator
                     executable cannot be found on PATH.

    Raises:
        ConfigError: On invalid values, or a missing generator when
                     require_all=True.
    """
    load_dotenv()

    generator_cmd = os.environ.get("BUNDLE_GENERATOR_CMD") or DEFAULT_GENERATOR_CMD
    generator_model = os.environ.get("BUNDLE_GENERATOR_MODEL") or None
    max_attempts = _positive_int("BUNDLE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
    history_keep = _positive_int("BUNDLE_HISTORY_KEEP", DEFAULT_HISTORY_KEEP)
    runs_dir = Path(os.environ.get("BUNDLE_RUNS_DIR") or DEFAULT_RUNS_DIR)
    prompt_file = Path(os.environ.get("BUNDLE_PROMPT_FILE") or DEFAULT_PROMPT_FILE)

    if require_all:
        parts = shlex.split(generator_cmd)
        executable = parts[0] if parts else ""
        if not executable or shutil.which(executable) is None:
            raise ConfigError(
                f"Generator command not found on PATH: {generator_cmd!r}\n"
                f"Install it, or set BUNDLE_GENERATOR_CMD in your environment or .env file."
            )

    return Config(
        generator_cmd=generator_cmd,
        generator_model=generator_model,
        max_attempts=max_attempts,
        history_keep=history_keep,
        runs_dir=runs_dir,
        prompt_file=prompt_file,
    )

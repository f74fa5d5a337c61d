"""Prompt assembly for the bundle generator."""

from pathlib import Path
from typing import List, Optional

from bundle_reconciler.constants import DETECTION_SOURCE


RETRY_FEEDBACK_TEMPLATE = """

## RETRY ATTEMPT {attempt} - PREVIOUS GENERATION FAILED

The previous generation attempt failed validation. You MUST fix these errors:

```
{errors}
```

### Instructions for this retry:
1. Carefully read each error above
2. Generate the COMPLETE bundle again, fixing all errors
3. Create ALL required files, do not skip any
4. Do NOT apologize or explain - just generate the corrected files
"""


def format_errors_for_retry(errors: List[str], attempt: int) -> str:
    """
    Format validation errors into a feedback block for the next attempt.

    Error strings are included verbatim, one per line.
    """
    return RETRY_FEEDBACK_TEMPLATE.format(attempt=attempt, errors="\n".join(errors))


def build_attempt_prompt(spec_text: str, feedback: List[str]) -> str:
    """The original prompt with every accumulated feedback block appended."""
    return spec_text + "".join(feedback)


def build_context_block(
    writable_root: Path,
    bundle_dir: Path,
    environments: List[str],
    mode: str,
    app_repo: Optional[Path] = None,
) -> str:
    """Describe where to read, where to write, and what to generate."""
    envs = ",".join(environments)
    app_line = f"APP_REPO (read-only scan): {app_repo}\n" if app_repo else ""
    return f"""
# CONTEXT (DO NOT IGNORE)
{app_line}BUNDLE_DIR (existing bundle, read-only reference): {bundle_dir}
OUTPUT_DIR (write here ONLY): {writable_root}
GENERATION_MODE: {mode}
ENVIRONMENTS: {envs}

Rules:
- Do NOT modify APP_REPO or BUNDLE_DIR.
- Write the COMPLETE bundle under OUTPUT_DIR, using paths relative to the bundle root.
- ONLY generate infrastructure for these environments: {envs}
- Save detection results to {DETECTION_SOURCE} as a JSON object with the keys
  backend, frontend, database and migrations.
"""


def build_update_context(
    user_modified: List[str],
    force_overwrite: bool,
    only_components: List[str],
) -> str:
    """Extra context for regenerating an existing bundle."""
    modified = "\n".join(f"- {p}" for p in user_modified) or "none"
    only = ",".join(only_components) or "all"
    return f"""
# UPDATE MODE CONTEXT
This is an UPDATE to an existing bundle, not a fresh generation.

FORCE_OVERWRITE: {str(force_overwrite).lower()}
ONLY_COMPONENTS: {only}

## User-Modified Files
{modified}

These files were edited by the user. Generate them as usual; the user's
versions are preserved and your output is offered alongside for review
unless FORCE_OVERWRITE is true.
"""


def build_generation_prompt(
    spec_text: str,
    writable_root: Path,
    bundle_dir: Path,
    environments: List[str],
    mode: str,
    app_repo: Optional[Path] = None,
    user_modified: Optional[List[str]] = None,
    force_overwrite: bool = False,
    only_components: Optional[List[str]] = None,
) -> str:
    """The exact first-attempt prompt: prompt file text plus run context."""
    prompt = spec_text.rstrip("\n") + "\n\n" + build_context_block(
        writable_root, bundle_dir, environments, mode, app_repo
    )
    if mode == "update":
        prompt += build_update_context(user_modified or [], force_overwrite, only_components or [])
    return prompt

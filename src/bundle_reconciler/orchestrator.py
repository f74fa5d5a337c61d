"""Generate / validate / retry loop.

State machine:

    IDLE -> GENERATING -> VALIDATING -> SUCCEEDED
                              |-> RETRYING -> GENERATING ...
                              |-> FAILED   (attempt ceiling reached)

Every attempt after the first starts from an empty writable root, and its
prompt is the original prompt plus one feedback block per failed attempt.
"""

import shutil
from pathlib import Path
from typing import Iterable

from bundle_reconciler.constants import MANIFEST_DIR_NAME, VCS_DIR_NAMES
from bundle_reconciler.generator import Generator
from bundle_reconciler.prompts import build_attempt_prompt, format_errors_for_retry
from bundle_reconciler.state import (
    FAILED,
    GENERATING,
    RETRYING,
    SUCCEEDED,
    VALIDATING,
    RegenerationState,
)
from bundle_reconciler.validator import Validator


def clean_writable_root(root: Path, keep: Iterable[str] = (MANIFEST_DIR_NAME, *VCS_DIR_NAMES)) -> None:
    """Delete everything directly under root except the names in keep."""
    root = Path(root)
    if not root.is_dir():
        return
    keep = set(keep)
    for child in root.iterdir():
        if child.name in keep:
            continue
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def generate_node(state: RegenerationState, generator: Generator) -> RegenerationState:
    """
    Run one generation attempt.

    Increments the attempt counter, cleans the writable root on retries,
    writes the attempt's prompt to the run directory and invokes the
    generator. A non-zero exit status is recorded, never raised.
    """
    state.attempt += 1
    state.status = GENERATING

    writable_root = Path(state.writable_root)
    if state.attempt > 1:
        print("Cleaning writable root for retry...")
        clean_writable_root(writable_root)
    writable_root.mkdir(parents=True, exist_ok=True)

    prompt = build_attempt_prompt(state.spec_text, state.feedback)

    log_path = None
    if state.run_dir:
        run_dir = Path(state.run_dir)
        run_dir.mkdir(parents=True, exist_ok=True)
        (run_dir / f"prompt_attempt_{state.attempt}.md").write_text(prompt + "\n")
        log_path = run_dir / f"generator_output_attempt_{state.attempt}.log"

    print(f"Generation attempt {state.attempt} of {state.max_attempts}")
    exit_code = generator.generate(
        prompt,
        writable_root,
        [Path(p) for p in state.readable_roots],
        log_path=log_path,
    )
    state.last_exit_code = exit_code
    if exit_code != 0:
        print(f"WARNING: generator exited with code {exit_code}; validating anyway")

    return state


def validate_node(state: RegenerationState, validator: Validator) -> RegenerationState:
    """
    Validate the writable root and decide the next status.

    SUCCEEDED on zero findings; RETRYING (with a feedback block appended)
    while attempts remain; FAILED once the ceiling is reached.
    """
    state.status = VALIDATING

    findings = validator.validate(Path(state.writable_root), state.environments)
    state.errors = [str(f) for f in findings]
    state.attempt_log.append({
        "attempt": state.attempt,
        "exit_code": state.last_exit_code,
        "error_count": len(state.errors),
        "errors": list(state.errors),
    })

    if not state.errors:
        print(f"Validation PASSED on attempt {state.attempt}")
        state.status = SUCCEEDED
        return state

    print(f"Validation FAILED with {len(state.errors)} error(s)")
    for err in state.errors:
        print(f"  - {err}")

    if state.attempt < state.max_attempts:
        state.feedback.append(format_errors_for_retry(state.errors, state.attempt + 1))
        state.status = RETRYING
    else:
        state.status = FAILED

    return state


def run_regeneration_loop(
    state: RegenerationState,
    generator: Generator,
    validator: Validator,
) -> RegenerationState:
    """
    Generate and validate until validation passes or attempts run out.

    Performs at most state.max_attempts generator calls; exactly that many
    when validation never passes.

    Raises:
        ValueError: If max_attempts < 1
    """
    if state.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {state.max_attempts}")

    while state.attempt < state.max_attempts:
        state = generate_node(state, generator)
        state = validate_node(state, validator)
        if state.done:
            break

    return state

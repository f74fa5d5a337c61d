"""Shared fakes for the generator and validator collaborators."""

from pathlib import Path

import pytest

from bundle_reconciler.generator import Generator
from bundle_reconciler.validator import ValidationError, Validator


class FakeGenerator(Generator):
    """Writes a scripted set of files per attempt and records every call."""

    def __init__(self, outputs, exit_codes=None):
        # outputs: one {relative_path: content} dict per attempt; the last repeats
        self.outputs = outputs
        self.exit_codes = exit_codes or []
        self.calls = []

    def generate(self, spec_text, writable_root, readable_roots, log_path=None):
        index = len(self.calls)
        self.calls.append({
            "spec_text": spec_text,
            "writable_root": Path(writable_root),
            "readable_roots": list(readable_roots),
            "existing": sorted(p.name for p in Path(writable_root).iterdir()),
        })
        files = self.outputs[min(index, len(self.outputs) - 1)] if self.outputs else {}
        for rel_path, content in files.items():
            target = Path(writable_root) / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        if log_path is not None:
            Path(log_path).write_text(f"attempt {index + 1}\n")
        if index < len(self.exit_codes):
            return self.exit_codes[index]
        return 0


class FakeValidator(Validator):
    """Returns scripted findings per call; the last list repeats."""

    def __init__(self, results=None):
        self.results = results if results is not None else [[]]
        self.calls = 0

    def validate(self, root, environments=None):
        index = min(self.calls, len(self.results) - 1)
        self.calls += 1
        return [ValidationError("missing-file", msg) for msg in self.results[index]]


@pytest.fixture
def make_generator():
    return FakeGenerator


@pytest.fixture
def make_validator():
    return FakeValidator

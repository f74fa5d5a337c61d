"""Tests for configuration loading."""

from pathlib import Path

import pytest

from bundle_reconciler import config as config_module
from bundle_reconciler.config import ConfigError, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "BUNDLE_GENERATOR_CMD",
        "BUNDLE_GENERATOR_MODEL",
        "BUNDLE_MAX_ATTEMPTS",
        "BUNDLE_HISTORY_KEEP",
        "BUNDLE_RUNS_DIR",
        "BUNDLE_PROMPT_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the tests
    monkeypatch.setattr(config_module, "load_dotenv", lambda: None)


class TestLoadConfig:

    def test_defaults(self):
        config = load_config(require_all=False)
        assert config.generator_cmd == "claude"
        assert config.generator_model is None
        assert config.max_attempts == 3
        assert config.history_keep == 10
        assert config.runs_dir == Path("runs")
        assert config.prompt_file == Path("prompts/BUNDLE_PROMPT.md")

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BUNDLE_GENERATOR_MODEL", "opus")
        monkeypatch.setenv("BUNDLE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("BUNDLE_HISTORY_KEEP", "2")
        monkeypatch.setenv("BUNDLE_RUNS_DIR", "/tmp/runs")
        config = load_config(require_all=False)
        assert config.generator_model == "opus"
        assert config.max_attempts == 5
        assert config.history_keep == 2
        assert config.runs_dir == Path("/tmp/runs")

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("BUNDLE_MAX_ATTEMPTS", "three")
        with pytest.raises(ConfigError, match="BUNDLE_MAX_ATTEMPTS"):
            load_config(require_all=False)

    def test_non_positive_integer(self, monkeypatch):
        monkeypatch.setenv("BUNDLE_HISTORY_KEEP", "0")
        with pytest.raises(ConfigError):
            load_config(require_all=False)

    def test_missing_generator(self, monkeypatch):
        monkeypatch.setenv("BUNDLE_GENERATOR_CMD", "definitely-not-a-real-binary-xyz")
        with pytest.raises(ConfigError, match="not found"):
            load_config(require_all=True)

    def test_generator_with_arguments(self, monkeypatch):
        """Only the executable needs to be on PATH."""
        monkeypatch.setenv("BUNDLE_GENERATOR_CMD", "sh -c")
        assert load_config(require_all=True).generator_cmd == "sh -c"

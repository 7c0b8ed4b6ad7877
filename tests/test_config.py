"""Tests for ExplorationConfig clamping, presets and environment loading."""

import pytest
from pydantic import ValidationError

from ui_scout.config import DEFAULT_GOAL, ExplorationConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("SCOUT_STEPS", "SCOUT_GOAL", "SCOUT_ENABLE_VERIFICATION", "SCOUT_TEMPERATURE", "SCOUT_SEED"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self):
        config = ExplorationConfig()
        assert config.steps == 20
        assert config.goal == DEFAULT_GOAL
        assert config.enable_verification is True
        assert config.max_retries == 2
        assert config.max_actions_per_screen == 3
        assert config.oracle_retries == 2
        assert config.max_tokens == 3000

    def test_out_of_range_values_are_clamped(self):
        config = ExplorationConfig(
            steps=-4, max_retries=-1, temperature=3.0, top_p=-1.0, max_tokens=50000, oracle_retries=0
        )
        assert config.steps == 0
        assert config.max_retries == 0
        assert config.temperature == 1.0
        assert config.top_p == 0.0
        assert config.max_tokens == 3000
        assert config.oracle_retries == 1


class TestPresets:
    def test_ci_preset(self):
        config = ExplorationConfig.ci_preset(steps=10, goal="Smoke test")
        assert (config.temperature, config.seed, config.top_p) == (0.3, 42, 0.9)
        assert config.steps == 10
        assert config.goal == "Smoke test"

    def test_ci_preset_overrides(self):
        config = ExplorationConfig.ci_preset(output_dir="out", max_retries=0)
        assert config.output_dir == "out"
        assert config.max_retries == 0
        assert config.seed == 42


class TestFromEnv:
    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("SCOUT_STEPS", "7")
        monkeypatch.setenv("SCOUT_ENABLE_VERIFICATION", "false")
        monkeypatch.setenv("SCOUT_TEMPERATURE", "0.2")
        config = ExplorationConfig.from_env()
        assert config.steps == 7
        assert config.enable_verification is False
        assert config.temperature == 0.2

    def test_overrides_win_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setenv("SCOUT_STEPS", "7")
        monkeypatch.setenv("SCOUT_GOAL", "from env")
        config = ExplorationConfig.from_env(steps=None, goal="from flag")
        assert config.steps == 7
        assert config.goal == "from flag"

    def test_bad_value_names_the_field(self, monkeypatch):
        monkeypatch.setenv("SCOUT_SEED", "lucky")
        with pytest.raises(ValidationError, match="seed"):
            ExplorationConfig.from_env()

    def test_empty_variable_keeps_default(self, monkeypatch):
        monkeypatch.setenv("SCOUT_STEPS", "")
        assert ExplorationConfig.from_env().steps == 20

    def test_dotenv_file_is_read(self, tmp_path):
        (tmp_path / ".env").write_text("SCOUT_STEPS=4\nOPENAI_API_KEY=unused\n")
        assert ExplorationConfig.from_env().steps == 4

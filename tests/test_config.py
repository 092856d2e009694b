"""Tests for pipeline configuration loading and validation."""

import os
from pathlib import Path

import pytest

from questlog.config import DEFAULT_STATE_DIR, PipelineConfig, resolve_state_dir

ENV_VARS = [
    "LLM_API_URL",
    "LLM_MODEL",
    "OLLAMA_MODEL",
    "LLM_API_KEY",
    "VLLM_API_KEY",
    "QUESTLOG_ORACLE_TIMEOUT",
    "QUESTLOG_MAX_CONCURRENT_CALLS",
    "QUESTLOG_STATUS_CONFIDENCE_FLOOR",
    "QUESTLOG_RELEVANCE_ATTEMPTS",
    "QUESTLOG_MAX_EXTRA_SUBTASKS",
    "QUESTLOG_ENABLE_STATUS_UPDATES",
    "STATE_DIR",
    "QUESTLOG_STATE_DIR",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path / ".env"


class TestFromEnv:
    def test_defaults(self, clean_env):
        config = PipelineConfig.from_env(dotenv_path=clean_env)

        assert config.oracle_url == "http://localhost:8000"
        assert config.oracle_model == "llama31-8b-instruct"
        assert config.oracle_api_key is None
        assert config.oracle_timeout == 60.0
        assert config.max_concurrent_calls == 4
        assert config.status_confidence_floor == 0.88
        assert config.relevance_attempts == 2
        assert config.max_extra_subtasks == 3
        assert config.enable_status_updates is True
        assert config.state_dir == DEFAULT_STATE_DIR
        assert config.validate() == []

    def test_environment_overrides(self, clean_env, monkeypatch, tmp_path):
        monkeypatch.setenv("LLM_API_URL", "http://vllm.local:8000/")
        monkeypatch.setenv("OLLAMA_MODEL", "qwen2.5")
        monkeypatch.setenv("VLLM_API_KEY", "secret")
        monkeypatch.setenv("QUESTLOG_ORACLE_TIMEOUT", "12.5")
        monkeypatch.setenv("QUESTLOG_STATUS_CONFIDENCE_FLOOR", "0.9")
        monkeypatch.setenv("QUESTLOG_ENABLE_STATUS_UPDATES", "off")
        monkeypatch.setenv("STATE_DIR", str(tmp_path / "state"))

        config = PipelineConfig.from_env(dotenv_path=clean_env)

        assert config.oracle_url == "http://vllm.local:8000"
        assert config.oracle_model == "qwen2.5"
        assert config.oracle_api_key == "secret"
        assert config.oracle_timeout == 12.5
        assert config.status_confidence_floor == 0.9
        assert config.enable_status_updates is False
        assert config.state_dir == tmp_path / "state"

    def test_llm_model_wins_over_ollama_model(self, clean_env, monkeypatch):
        monkeypatch.setenv("LLM_MODEL", "llama")
        monkeypatch.setenv("OLLAMA_MODEL", "qwen")

        assert PipelineConfig.from_env(dotenv_path=clean_env).oracle_model == "llama"

    def test_unparseable_numbers_fall_back(self, clean_env, monkeypatch):
        monkeypatch.setenv("QUESTLOG_MAX_CONCURRENT_CALLS", "many")
        monkeypatch.setenv("QUESTLOG_ORACLE_TIMEOUT", "soon")

        config = PipelineConfig.from_env(dotenv_path=clean_env)

        assert config.max_concurrent_calls == 4
        assert config.oracle_timeout == 60.0

    def test_dotenv_file_loaded(self, clean_env):
        clean_env.write_text("QUESTLOG_RELEVANCE_ATTEMPTS=3\n")

        try:
            config = PipelineConfig.from_env(dotenv_path=clean_env)
        finally:
            os.environ.pop("QUESTLOG_RELEVANCE_ATTEMPTS", None)

        assert config.relevance_attempts == 3


class TestValidate:
    def test_reports_each_problem(self):
        config = PipelineConfig(
            oracle_timeout=0,
            max_concurrent_calls=0,
            status_confidence_floor=1.0,
            relevance_attempts=0,
            max_extra_subtasks=4,
        )

        errors = config.validate()

        assert len(errors) == 5
        assert any("max_extra_subtasks" in e for e in errors)


def test_resolve_state_dir(monkeypatch, tmp_path):
    monkeypatch.delenv("STATE_DIR", raising=False)
    monkeypatch.setenv("QUESTLOG_STATE_DIR", str(tmp_path))
    assert resolve_state_dir() == tmp_path

    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_state_dir(Path("~/custom")) == tmp_path / "custom"

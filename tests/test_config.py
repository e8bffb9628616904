"""Tests for configuration loading."""

import pytest

from ai_assistant.config import AppConfig, ModelConfig, load_config


def test_defaults():
    config = AppConfig()
    assert config.assistant.max_retries == 3
    assert config.assistant.retry_delay == 15
    assert config.assistant.max_chain_depth == 10
    assert config.external_tools.poll_attempts == 60
    assert config.external_tools.poll_interval == 1.0


def test_load_with_env_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-test")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
data_dir: /tmp/assistant
assistant:
  name: Jarvis
  model: claude-test
  chat_history: 5
models:
  - name: claude-test
anthropic:
  api_key: ${TEST_ANTHROPIC_KEY}
available_functions:
  - name: weather
    request_id: f.request
    result_id: f.result
storage:
  db_path: ${data_dir}/db.sqlite
""",
        encoding="utf-8",
    )

    config = load_config(config_file, tmp_path / "missing.env")

    assert config.assistant.name == "Jarvis"
    assert config.assistant.chat_history == 5
    assert config.anthropic.api_key == "sk-test"
    assert config.storage.db_path == "/tmp/assistant/db.sqlite"
    assert config.available_functions[0].name == "weather"
    assert config.find_model("claude-test") is not None


def test_env_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("FROM_DOTENV_KEY", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("FROM_DOTENV_KEY=dotenv-value\n", encoding="utf-8")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("anthropic:\n  api_key: ${FROM_DOTENV_KEY}\n", encoding="utf-8")

    config = load_config(config_file, env_file)

    assert config.anthropic.api_key == "dotenv-value"
    monkeypatch.delenv("FROM_DOTENV_KEY", raising=False)


def test_empty_file_gives_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("", encoding="utf-8")
    assert load_config(config_file, tmp_path / ".env") == AppConfig()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")


def test_find_model_ignores_inactive():
    config = AppConfig(models=[ModelConfig(name="old", active=False), ModelConfig(name="new")])
    assert config.find_model("old") is None
    assert config.find_model("new").provider == "anthropic"
    assert config.find_model("other") is None

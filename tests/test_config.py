"""Tests for YAML config loading and validation."""

from __future__ import annotations

import pytest

from hn_digest.config import AppConfig, ProviderConfig, get_api_key, load_config
from hn_digest.core.errors import ConfigError


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_load_config_defaults_without_path():
    cfg = load_config(None)

    assert isinstance(cfg, AppConfig)
    assert cfg.retry.max_retry_attempts == 5
    assert cfg.digest.min_stories == 5
    assert cfg.channels.file.enabled is True


def test_load_config_merges_nested_sections(tmp_path):
    path = _write(
        tmp_path,
        """
digest:
  min_stories: 3
  max_stories: 8
  grouping: site
channels:
  telegram:
    enabled: true
  delivery_lease_seconds: 30
retry:
  local_attempts: 2
unknown_section:
  ignored: true
""",
    )

    cfg = load_config(path)

    assert cfg.digest.min_stories == 3
    assert cfg.digest.max_stories == 8
    assert cfg.digest.grouping == "site"
    assert cfg.digest.format == "markdown"
    assert cfg.channels.telegram.enabled is True
    assert cfg.channels.telegram.bot_token_env == "TELEGRAM_BOT_TOKEN"
    assert cfg.channels.delivery_lease_seconds == 30
    assert cfg.retry.local_attempts == 2
    assert cfg.retry.max_retry_attempts == 5


def test_load_config_ignores_unknown_key_inside_section(tmp_path):
    path = _write(tmp_path, "digest:\n  colour: blue\n")

    cfg = load_config(path)

    assert not hasattr(cfg.digest, "colour")


@pytest.mark.parametrize(
    "text",
    [
        "digest:\n  min_stories: 10\n  max_stories: 5\n",
        "digest:\n  grouping: random\n",
        "digest:\n  format: pdf\n",
        "extraction:\n  concurrency: 0\n",
        "retry:\n  max_retry_attempts: 0\n",
        "scheduler:\n  interval_seconds: 0\n",
    ],
)
def test_load_config_rejects_invalid_values(tmp_path, text):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, text))


def test_load_config_rejects_non_mapping(tmp_path):
    with pytest.raises(ConfigError):
        load_config(_write(tmp_path, "- just\n- a list\n"))


def test_load_config_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "missing.yaml"))


def test_get_api_key_prefers_inline_value(monkeypatch):
    monkeypatch.setenv("GOOGLE_AI_API_KEY", "from-env")

    assert get_api_key(ProviderConfig(api_key="inline")) == "inline"
    assert get_api_key(ProviderConfig()) == "from-env"

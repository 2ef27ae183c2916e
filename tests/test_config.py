"""Tests for the configuration loader."""

import json
from pathlib import Path

import pytest

from analysis_gateway.config import MAX_PROBE_TIMEOUT, load_config


def test_load_config_success(
    test_config_path: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Loading a valid config file returns a populated GatewayConfig."""
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-ant-test-12345")
    config = load_config(test_config_path)

    assert config.endpoint_url == "https://api.anthropic.com/v1/messages"
    assert config.model_id == "test-model"
    assert config.max_tokens == 1000
    assert config.request_timeout == 5.0
    assert config.probe_timeout == 2.0
    assert config.credential == "sk-ant-test-12345"


def test_defaults_for_omitted_settings(
    test_config_path: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Settings not present in the file fall back to the provider defaults."""
    monkeypatch.delenv("TEST_ANTHROPIC_KEY", raising=False)
    config = load_config(test_config_path)

    assert config.api_version == "2023-06-01"
    assert config.credential_prefix == "sk-ant-"
    assert config.provider_domain == "anthropic.com"
    assert config.max_body_bytes == 50 * 1024 * 1024


def test_load_config_missing_file() -> None:
    """Loading from a nonexistent path raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        load_config("/tmp/nonexistent_gateway_config.json")


def test_credential_missing_from_env(
    test_config_path: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    """An unset credential variable yields an empty credential, not an error."""
    monkeypatch.delenv("TEST_ANTHROPIC_KEY", raising=False)
    config = load_config(test_config_path)
    assert config.credential == ""


def test_probe_timeout_is_capped(tmp_path: Path) -> None:
    """Probe timeouts above the cap are clamped to it."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"provider": {"probe_timeout": 60}}))
    config = load_config(path)
    assert config.probe_timeout == MAX_PROBE_TIMEOUT


def test_non_object_config_rejected(tmp_path: Path) -> None:
    """A config file whose top level is not an object raises ValueError."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(["not", "an", "object"]))
    with pytest.raises(ValueError):
        load_config(path)


@pytest.mark.parametrize(
    "provider",
    [
        {"max_tokens": 0},
        {"max_tokens": "many"},
        {"request_timeout": -1},
        {"probe_timeout": 0},
    ],
)
def test_invalid_provider_values_rejected(tmp_path: Path, provider: dict) -> None:
    """Non-numeric or non-positive bounds raise ValueError."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"provider": provider}))
    with pytest.raises(ValueError):
        load_config(path)

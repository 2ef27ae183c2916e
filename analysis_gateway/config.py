"""Configuration loader for the advisory analysis gateway.

Reads a JSON config file describing the completion provider (endpoint, model,
token and time bounds) plus the log and prompt file locations. The provider
credential is resolved from an environment variable once, at load time, so the
resulting config is immutable for the life of the process.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

DEFAULT_ENDPOINT_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_MODEL_ID = "claude-3-5-sonnet-20241022"
DEFAULT_API_VERSION = "2023-06-01"
DEFAULT_API_KEY_ENV = "ANTHROPIC_API_KEY"

# Probes must stay cheap; anything slower than this is treated as unreachable.
MAX_PROBE_TIMEOUT = 10.0


@dataclass(frozen=True)
class GatewayConfig:
    """Top-level gateway configuration."""

    credential: str = ""
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    model_id: str = DEFAULT_MODEL_ID
    max_tokens: int = 4000
    request_timeout: float = 30.0
    probe_timeout: float = MAX_PROBE_TIMEOUT
    max_body_bytes: int = 50 * 1024 * 1024
    api_version: str = DEFAULT_API_VERSION
    credential_prefix: str = "sk-ant-"
    provider_domain: str = "anthropic.com"
    log_file: str = "logs/gateway.log"
    prompt_file: str = "config/prompts.yaml"


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

    Args:
        path: Path to the JSON config file.

    Returns:
        A fully resolved GatewayConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file contains invalid data.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw: Dict[str, Any] = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError("Config file must contain a JSON object at the top level")

    provider = raw.get("provider", {})
    api_key_env = provider.get("api_key_env", DEFAULT_API_KEY_ENV)

    try:
        max_tokens = int(provider.get("max_tokens", 4000))
        request_timeout = float(provider.get("request_timeout", 30.0))
        probe_timeout = float(provider.get("probe_timeout", MAX_PROBE_TIMEOUT))
        max_body_bytes = int(provider.get("max_body_bytes", 50 * 1024 * 1024))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid numeric provider setting: {}".format(exc)) from exc

    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")
    if request_timeout <= 0 or probe_timeout <= 0:
        raise ValueError("Timeouts must be positive")

    return GatewayConfig(
        credential=os.getenv(api_key_env, ""),
        endpoint_url=provider.get("endpoint_url", DEFAULT_ENDPOINT_URL),
        model_id=provider.get("model", DEFAULT_MODEL_ID),
        max_tokens=max_tokens,
        request_timeout=request_timeout,
        probe_timeout=min(probe_timeout, MAX_PROBE_TIMEOUT),
        max_body_bytes=max_body_bytes,
        api_version=provider.get("api_version", DEFAULT_API_VERSION),
        credential_prefix=provider.get("credential_prefix", "sk-ant-"),
        provider_domain=provider.get("provider_domain", "anthropic.com"),
        log_file=raw.get("log_file", "logs/gateway.log"),
        prompt_file=raw.get("prompt_file", "config/prompts.yaml"),
    )

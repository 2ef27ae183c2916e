"""Shared test fixtures for the advisory analysis gateway tests."""

import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx
import pytest

from analysis_gateway.config import GatewayConfig
from analysis_gateway.models import (
    AssetBuckets,
    ClientFinancialProfile,
    DebtEntry,
    Goal,
)

VALID_KEY = "sk-ant-api03-" + "a" * 60
ENDPOINT = "https://api.anthropic.com/v1/messages"


def make_config(**overrides: Any) -> GatewayConfig:
    """Return a valid GatewayConfig with optional field overrides."""
    base = GatewayConfig(credential=VALID_KEY, endpoint_url=ENDPOINT)
    return replace(base, **overrides)


def provider_reply(
    text: str = "Analysis complete.",
    usage: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    """Build a provider reply body in the messages format."""
    return {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": usage or {"input_tokens": 12, "output_tokens": 34},
    }


async def drip(
    body: bytes, chunk_size: int = 5, delay: float = 0.2
) -> AsyncIterator[bytes]:
    """Yield body in small chunks, pausing before each one.

    Every pause is shorter than any read timeout, so only a deadline on the
    whole call can stop it.
    """
    for start in range(0, len(body), chunk_size):
        await asyncio.sleep(delay)
        yield body[start : start + chunk_size]


class FakeProvider:
    """Records requests and answers HEAD probes and POSTs.

    `on_post` may return an httpx.Response or raise a transport exception.
    """

    def __init__(
        self,
        on_post: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        on_head: Optional[Callable[[httpx.Request], httpx.Response]] = None,
    ) -> None:
        self.requests: List[httpx.Request] = []
        self.on_post = on_post or (
            lambda request: httpx.Response(200, json=provider_reply())
        )
        self.on_head = on_head or (lambda request: httpx.Response(405))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "HEAD":
            return self.on_head(request)
        return self.on_post(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def posts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def last_payload(self) -> Dict[str, Any]:
        return json.loads(self.posts[-1].content)


def write_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal test config and return its path."""
    config: Dict[str, Any] = {
        "provider": {
            "endpoint_url": ENDPOINT,
            "api_key_env": "TEST_ANTHROPIC_KEY",
            "model": "test-model",
            "max_tokens": 1000,
            "request_timeout": 5,
            "probe_timeout": 2,
        },
        "log_file": str(tmp_path / "test.log"),
        "prompt_file": str(tmp_path / "prompts.yaml"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return write_config(tmp_path)


@pytest.fixture()
def fake_provider() -> FakeProvider:
    """Return a provider double that answers every call successfully."""
    return FakeProvider()


@pytest.fixture()
def profile() -> ClientFinancialProfile:
    """A salaried client with one home loan and one goal."""
    return ClientFinancialProfile(
        name="Asha Rao",
        age=34,
        occupation="Engineer",
        risk_tolerance="Moderate",
        monthly_income=100000,
        monthly_expenses=40000,
        debts=[
            DebtEntry(
                type="home_loan",
                emi=10000,
                outstanding=1500000,
                interest_rate=8.5,
                lender="HDFC",
            )
        ],
        assets=AssetBuckets(cash=240000, equity=1000000, fixed_income=500000),
        goals=[Goal(name="Child Education", target_amount=1000000, target_year=2030)],
    )

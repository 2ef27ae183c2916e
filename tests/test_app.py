"""Endpoint tests for the analysis gateway app.

The app's lazy globals are reset before each test and the dispatcher and
health monitor are rebuilt around a fake provider transport.
"""

from pathlib import Path
from typing import Any, Dict

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from conftest import VALID_KEY, FakeProvider, provider_reply, write_config

from analysis_gateway import app as app_module
from analysis_gateway.app import app
from analysis_gateway.config import load_config
from analysis_gateway.diagnostics import ConfigValidator, NetworkProber
from analysis_gateway.dispatcher import RequestDispatcher
from analysis_gateway.health import HealthMonitor
from analysis_gateway.stats import StatisticsAggregator

REPO_PROMPTS = Path(__file__).resolve().parent.parent / "config" / "prompts.yaml"


@pytest.fixture(autouse=True)
def provider(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeProvider:
    """Point the app at a test config and a fake provider."""
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", VALID_KEY)
    config_path = write_config(tmp_path, {"prompt_file": str(REPO_PROMPTS)})
    config = load_config(config_path)

    fake = FakeProvider()
    stats = StatisticsAggregator()

    monkeypatch.setattr(app_module, "CONFIG_PATH", config_path)
    monkeypatch.setattr(app_module, "_config", config)
    monkeypatch.setattr(app_module, "_statistics", stats)
    monkeypatch.setattr(app_module, "_prompt_library", None)
    monkeypatch.setattr(
        app_module,
        "_dispatcher",
        RequestDispatcher(config, stats, transport=fake.transport),
    )
    monkeypatch.setattr(
        app_module,
        "_health_monitor",
        HealthMonitor(
            ConfigValidator(config),
            NetworkProber(config, transport=fake.transport),
            stats,
        ),
    )
    return fake


def _profile_body() -> Dict[str, Any]:
    return {
        "name": "Asha Rao",
        "monthly_income": 100000,
        "monthly_expenses": 40000,
        "debts": [{"type": "car_loan", "emi": 12000, "outstanding": 400000}],
        "assets": {"cash": 150000, "equity": 600000},
        "goals": [
            {"name": "Home", "target_amount": 2000000, "target_year": 2032}
        ],
    }


async def _post(path: str, body: Dict[str, Any]) -> httpx.Response:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(path, json=body)


async def _get(path: str) -> httpx.Response:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get(path)


@pytest.mark.asyncio
async def test_analysis_happy_path(provider: FakeProvider) -> None:
    resp = await _post(
        "/v1/analysis",
        {"system_prompt": "You are an advisor.", "user_message": "Summarise."},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["content"] == "Analysis complete."
    assert data["request_id"].startswith("req-")
    assert provider.last_payload()["model"] == "test-model"


@pytest.mark.asyncio
async def test_analysis_with_json_document(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(
        200, json=provider_reply('{"summary": "fine",}')
    )
    resp = await _post(
        "/v1/analysis",
        {"system_prompt": "s", "user_message": "u", "expect_json": True},
    )

    data = resp.json()
    assert data["document"]["provenance"] == "repaired"
    assert data["document"]["value"] == {"summary": "fine"}


@pytest.mark.asyncio
async def test_failed_analysis_returns_generic_envelope(provider: FakeProvider) -> None:
    """Failures hide provider detail but keep the category."""
    provider.on_post = lambda r: httpx.Response(
        401, json={"error": {"message": "invalid x-api-key"}}
    )
    resp = await _post("/v1/analysis", {"system_prompt": "s", "user_message": "u"})

    assert resp.status_code == 502
    data = resp.json()
    assert data["error"]["type"] == "auth"
    assert data["error"]["message"] == app_module.RETRY_MESSAGE
    assert "x-api-key" not in resp.text
    assert data["request_id"].startswith("req-")


@pytest.mark.asyncio
async def test_invalid_body_is_rejected() -> None:
    resp = await _post("/v1/analysis", {"system_prompt": "s", "temperature": 2})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_debt_strategy_endpoint(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(
        200, json=provider_reply('{"debtPrioritization": []}')
    )
    resp = await _post("/v1/analysis/debt-strategy", {"profile": _profile_body()})

    assert resp.status_code == 200
    assert resp.json()["document"]["value"] == {"debtPrioritization": []}
    message = provider.last_payload()["messages"][0]["content"]
    assert "car_loan" in message


@pytest.mark.asyncio
async def test_goals_endpoint(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(
        200, json=provider_reply('{"individualGoalAnalysis": []}')
    )
    resp = await _post(
        "/v1/analysis/goals", {"profile": _profile_body(), "reference_year": 2027}
    )

    assert resp.status_code == 200
    assert "(60 months)" in provider.last_payload()["messages"][0]["content"]


@pytest.mark.asyncio
async def test_goals_endpoint_without_goals(provider: FakeProvider) -> None:
    body = _profile_body()
    body["goals"] = []
    resp = await _post("/v1/analysis/goals", {"profile": body})

    assert resp.status_code == 502
    assert resp.json()["error"]["type"] == "client"
    assert provider.requests == []


@pytest.mark.asyncio
async def test_plan_comparison_endpoint(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(
        200,
        json=provider_reply(
            '{"executiveSummary": "Plan B pays down the car loan sooner.",'
            ' "keyDifferences": [], "recommendation":'
            ' {"suggestedPlan": "planB", "confidenceScore": -0.2}}'
        ),
    )
    resp = await _post(
        "/v1/analysis/plan-comparison",
        {
            "plan_a": {
                "plan_type": "cash_flow",
                "version": 1,
                "client_profile": _profile_body(),
            },
            "plan_b": {"plan_type": "cash_flow", "version": 2},
            "reference_year": 2027,
        },
    )

    assert resp.status_code == 200
    document = resp.json()["document"]
    assert document["provenance"] == "clean"
    assert document["value"]["recommendation"]["confidenceScore"] == 0.0
    message = provider.last_payload()["messages"][0]["content"]
    assert "COMPARISON CRITERIA FOR CASH FLOW PLANS:" in message
    assert "- Version: 2" in message


@pytest.mark.asyncio
async def test_plan_comparison_requires_both_plans() -> None:
    resp = await _post("/v1/analysis/plan-comparison", {"plan_a": {}})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_health_reports_counters(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(429, json={})
    await _post("/v1/analysis", {"system_prompt": "s", "user_message": "u"})

    resp = await _get("/health")

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["config"]["is_valid"] is True
    assert data["network"]["success"] is True
    assert data["statistics"]["total_requests"] == 1
    assert data["statistics"]["by_category"]["rate_limit"] == 1
    assert data["statistics"]["last_error"]["category"] == "rate_limit"


@pytest.mark.asyncio
async def test_health_live(provider: FakeProvider) -> None:
    resp = await _get("/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"live": True}


@pytest.mark.asyncio
async def test_health_live_when_unreachable(provider: FakeProvider) -> None:
    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)

    provider.on_head = down
    resp = await _get("/health/live")
    assert resp.status_code == 503
    assert resp.json() == {"live": False}


@pytest.mark.asyncio
async def test_health_config() -> None:
    resp = await _get("/health/config")
    assert resp.status_code == 200
    assert resp.json()["is_valid"] is True


@pytest.mark.asyncio
async def test_health_network() -> None:
    resp = await _get("/health/network")
    assert resp.status_code == 200
    assert resp.json()["hostname"] == "api.anthropic.com"


@pytest.mark.asyncio
async def test_health_metrics(provider: FakeProvider) -> None:
    await _post("/v1/analysis", {"system_prompt": "s", "user_message": "u"})
    resp = await _get("/health/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "gateway_requests_total 1.0" in resp.text


@pytest.mark.asyncio
async def test_health_test_call(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(200, json=provider_reply("OK"))
    resp = await _post("/health/test", {})

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["response"] == "OK"
    assert "connectivity check" in provider.last_payload()["system"]


@pytest.mark.asyncio
async def test_health_test_call_failure(provider: FakeProvider) -> None:
    provider.on_post = lambda r: httpx.Response(500, json={})
    resp = await _post("/health/test", {})

    assert resp.status_code == 503
    assert resp.json()["category"] == "server"

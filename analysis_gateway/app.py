"""FastAPI application for the advisory analysis gateway.

Exposes the analysis endpoints used by the advisory web tier and the health
surface used by operators:

1. /v1/analysis* dispatch to the provider and return the classified result
2. Failed analyses map to a generic retry message; the category is kept
3. /health* re-run the configuration check and reachability probe on demand
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from analysis_gateway.advisor import AdvisoryAnalyst
from analysis_gateway.config import GatewayConfig, load_config
from analysis_gateway.diagnostics import ConfigValidator, NetworkProber
from analysis_gateway.dispatcher import DIAGNOSTIC_USER_MESSAGE, RequestDispatcher
from analysis_gateway.health import HealthMonitor
from analysis_gateway.models import (
    AnalysisCall,
    AnalysisResult,
    DebtStrategyCall,
    ErrorDetail,
    ErrorResponse,
    GoalAnalysisCall,
    PlanComparisonCall,
)
from analysis_gateway.prompts import PromptLibrary, PromptNotFoundError, load_prompts
from analysis_gateway.stats import StatisticsAggregator
from analysis_gateway.telemetry import logger, setup_logging

CONFIG_PATH = os.getenv("GATEWAY_CONFIG", "config/example.config.json")

RETRY_MESSAGE = (
    "The analysis service is temporarily unavailable. Please try again shortly."
)

_config: Optional[GatewayConfig] = None
_statistics: Optional[StatisticsAggregator] = None
_dispatcher: Optional[RequestDispatcher] = None
_prompt_library: Optional[PromptLibrary] = None
_health_monitor: Optional[HealthMonitor] = None


def get_config() -> GatewayConfig:
    """Return the loaded gateway configuration (lazy-init)."""
    global _config
    if _config is None:
        _config = load_config(CONFIG_PATH)
    return _config


def get_statistics() -> StatisticsAggregator:
    """Return the process-wide statistics aggregator (lazy-init)."""
    global _statistics
    if _statistics is None:
        _statistics = StatisticsAggregator()
    return _statistics


def get_dispatcher() -> RequestDispatcher:
    """Return the request dispatcher (lazy-init from config)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = RequestDispatcher(get_config(), get_statistics())
    return _dispatcher


def get_prompt_library() -> PromptLibrary:
    """Return the prompt library (lazy-init from config)."""
    global _prompt_library
    if _prompt_library is None:
        cfg = get_config()
        try:
            _prompt_library = load_prompts(cfg.prompt_file)
        except (FileNotFoundError, ValueError) as exc:
            logger.warning("Prompt library unavailable: %s", exc)
            _prompt_library = PromptLibrary()
    return _prompt_library


def get_health_monitor() -> HealthMonitor:
    """Return the health monitor (lazy-init from config)."""
    global _health_monitor
    if _health_monitor is None:
        cfg = get_config()
        _health_monitor = HealthMonitor(
            ConfigValidator(cfg), NetworkProber(cfg), get_statistics()
        )
    return _health_monitor


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Initialize config, logging, prompts and the dispatcher on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file)
    get_prompt_library()
    get_dispatcher()
    get_health_monitor()
    yield


app = FastAPI(title="Advisory Analysis Gateway", version="0.1.0", lifespan=lifespan)


def _error_response(
    status: int,
    error_type: str,
    message: str,
    request_id: Optional[str] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(
        error=ErrorDetail(type=error_type, message=message),
        request_id=request_id,
    )
    return JSONResponse(status_code=status, content=body.model_dump())


def _analysis_response(result: AnalysisResult) -> JSONResponse:
    """Return the result, or a generic retry envelope when it failed.

    Operators see the full classification through /health and the logs.
    """
    if result.success:
        return JSONResponse(status_code=200, content=result.model_dump(mode="json"))
    return _error_response(
        502,
        result.error_classification.category.value,
        RETRY_MESSAGE,
        request_id=result.request_id,
    )


@app.post("/v1/analysis", response_model=None)
async def analysis(request: AnalysisCall) -> JSONResponse:
    """Dispatch a caller-built prompt pair to the provider."""
    result = await get_dispatcher().dispatch(
        request.system_prompt,
        request.user_message,
        request.temperature,
        expect_json=request.expect_json,
    )
    return _analysis_response(result)


@app.post("/v1/analysis/debt-strategy", response_model=None)
async def debt_strategy(request: DebtStrategyCall) -> JSONResponse:
    """Run the debt-strategy analysis for a client profile."""
    analyst = AdvisoryAnalyst(get_dispatcher(), get_prompt_library())
    try:
        result = await analyst.analyze_debt_strategy(request.profile)
    except PromptNotFoundError as exc:
        return _error_response(500, "prompt_not_found", exc.detail)
    return _analysis_response(result)


@app.post("/v1/analysis/goals", response_model=None)
async def goal_analysis(request: GoalAnalysisCall) -> JSONResponse:
    """Run the goal analysis for a client profile."""
    analyst = AdvisoryAnalyst(get_dispatcher(), get_prompt_library())
    try:
        result = await analyst.analyze_goals(request.profile, request.reference_year)
    except PromptNotFoundError as exc:
        return _error_response(500, "prompt_not_found", exc.detail)
    return _analysis_response(result)


@app.post("/v1/analysis/plan-comparison", response_model=None)
async def plan_comparison(request: PlanComparisonCall) -> JSONResponse:
    """Compare two plans for the same client."""
    analyst = AdvisoryAnalyst(get_dispatcher(), get_prompt_library())
    try:
        result = await analyst.compare_plans(
            request.plan_a, request.plan_b, request.reference_year
        )
    except PromptNotFoundError as exc:
        return _error_response(500, "prompt_not_found", exc.detail)
    return _analysis_response(result)


@app.get("/health", response_model=None)
async def health() -> JSONResponse:
    """Detailed health snapshot: config, network, counters, uptime."""
    snapshot = await get_health_monitor().snapshot()
    return JSONResponse(status_code=200, content=snapshot.to_dict())


@app.get("/health/live", response_model=None)
async def health_live() -> JSONResponse:
    """Liveness: 200 when healthy, 503 otherwise."""
    live = await get_health_monitor().is_live()
    return JSONResponse(status_code=200 if live else 503, content={"live": live})


@app.get("/health/config", response_model=None)
async def health_config() -> JSONResponse:
    """Configuration validation result with recommendations."""
    validation = get_health_monitor().validator.validate()
    return JSONResponse(status_code=200, content=validation.to_dict())


@app.get("/health/network", response_model=None)
async def health_network() -> JSONResponse:
    """Reachability probe against the provider host."""
    probe = await get_health_monitor().prober.probe()
    return JSONResponse(status_code=200, content=probe.to_dict())


@app.get("/health/metrics", response_model=None)
async def health_metrics() -> PlainTextResponse:
    """Counters in the Prometheus text exposition format."""
    return PlainTextResponse(
        get_health_monitor().render_metrics(), media_type=CONTENT_TYPE_LATEST
    )


@app.post("/health/test", response_model=None)
async def health_test() -> JSONResponse:
    """Send a trivial prompt end to end and report the outcome."""
    dispatcher = get_dispatcher()
    try:
        template = get_prompt_library().get("diagnostic")
    except PromptNotFoundError:
        outcome = await dispatcher.run_diagnostic_call()
    else:
        outcome = await dispatcher.run_diagnostic_call(
            template.system, template.instructions or DIAGNOSTIC_USER_MESSAGE
        )
    return JSONResponse(
        status_code=200 if outcome.success else 503,
        content=outcome.model_dump(mode="json"),
    )


@app.exception_handler(422)
async def validation_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Convert FastAPI's validation errors into our error envelope format."""
    return _error_response(
        422,
        "validation_error",
        "Request validation failed: {}".format(exc),
    )

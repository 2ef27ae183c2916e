"""Request dispatcher for the completion provider.

Every analysis goes through RequestDispatcher.dispatch(), which runs the
preflight checks (configuration, reachability), sends the request, checks the
reply structure, optionally recovers a structured document, and records the
outcome in the statistics aggregator exactly once. No exception leaves
dispatch(): every failure comes back as a classified AnalysisResult.
"""

import asyncio
import json
import time
import uuid
from typing import Any, Dict, List, Optional, Set, Tuple

import httpx
from pydantic import ValidationError

from analysis_gateway.classifier import classification_for, classify
from analysis_gateway.config import GatewayConfig
from analysis_gateway.diagnostics import ConfigValidator, NetworkProber
from analysis_gateway.models import (
    AnalysisRequest,
    AnalysisResult,
    DiagnosticCallResult,
    ErrorCategory,
    ErrorClassification,
)
from analysis_gateway.recovery import recover
from analysis_gateway.stats import StatisticsAggregator
from analysis_gateway.telemetry import log_request, logger

DIAGNOSTIC_SYSTEM_PROMPT = "You are a connectivity check. Reply with the single word OK."
DIAGNOSTIC_USER_MESSAGE = "Reply with OK."

_PROBE_CATEGORIES = {ErrorCategory.DNS.value, ErrorCategory.CONNECTION.value}


class ResponseTooLargeError(Exception):
    """Raised when a provider reply exceeds the configured body limit."""

    def __init__(self, limit: int, detail: str) -> None:
        self.limit = limit
        self.detail = detail
        super().__init__(detail)


def validate_response_structure(data: Any) -> List[str]:
    """Check a provider reply against the expected message shape.

    Deviations are returned as warnings; the caller decides whether the
    reply is still usable.

    Args:
        data: The decoded JSON reply.

    Returns:
        A list of human-readable warnings, empty when the shape matches.
    """
    if not isinstance(data, dict):
        return ["Reply body is not a JSON object"]

    warnings: List[str] = []
    content = data.get("content")
    if not isinstance(content, list):
        warnings.append("Reply has no content array")
    elif not content:
        warnings.append("Reply content array is empty")
    else:
        first = content[0]
        if not isinstance(first, dict):
            warnings.append("First content block is not an object")
        else:
            if first.get("type", "text") != "text":
                warnings.append(
                    "First content block has type {!r}".format(first.get("type"))
                )
            if not isinstance(first.get("text"), str):
                warnings.append("First content block has no text")

    if not isinstance(data.get("usage"), dict):
        warnings.append("Reply has no usage object")
    if data.get("stop_reason") == "max_tokens":
        warnings.append("Reply was cut off at the token limit")
    return warnings


def extract_text(data: Any) -> Optional[str]:
    """Return the text of the first content block, or None."""
    if not isinstance(data, dict):
        return None
    content = data.get("content")
    if not isinstance(content, list) or not content:
        return None
    first = content[0]
    if not isinstance(first, dict):
        return None
    text = first.get("text")
    return text if isinstance(text, str) else None


def _new_request_id() -> str:
    return "req-{}".format(uuid.uuid4().hex[:12])


class RequestDispatcher:
    """Sends analysis requests to the completion provider.

    The statistics aggregator is injected so that tests and the web layer
    control its lifetime. Provider calls run in their own task and are
    shielded from caller cancellation: an abandoned call still finishes and
    is still counted, its result is simply discarded.
    """

    def __init__(
        self,
        config: GatewayConfig,
        statistics: StatisticsAggregator,
        validator: Optional[ConfigValidator] = None,
        prober: Optional[NetworkProber] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._statistics = statistics
        self._validator = validator or ConfigValidator(config)
        self._prober = prober or NetworkProber(config, transport=transport)
        self._transport = transport
        self._in_flight: Set["asyncio.Task[AnalysisResult]"] = set()

    @property
    def statistics(self) -> StatisticsAggregator:
        return self._statistics

    @property
    def in_flight(self) -> int:
        """Number of provider calls still running."""
        return len(self._in_flight)

    async def dispatch(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.3,
        *,
        expect_json: bool = False,
        operation: str = "analysis",
    ) -> AnalysisResult:
        """Send one analysis request and return its classified outcome.

        Args:
            system_prompt: Instructions for the provider.
            user_message: The analysis query.
            temperature: Sampling temperature in [0, 1].
            expect_json: Recover a structured document from the reply.
            operation: Label used in logs.

        Returns:
            An AnalysisResult. Never raises for provider or network faults.
        """
        task = asyncio.ensure_future(
            self._run(system_prompt, user_message, temperature, expect_json, operation)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return await asyncio.shield(task)

    def record_local_failure(
        self,
        operation: str,
        error: str,
        category: ErrorCategory = ErrorCategory.CLIENT,
    ) -> AnalysisResult:
        """Count and return a failure detected before any dispatch."""
        result = self._failure(
            _new_request_id(), time.monotonic(), category, error, stage="request"
        )
        self._finish(result, operation)
        return result

    async def run_diagnostic_call(
        self,
        system_prompt: str = DIAGNOSTIC_SYSTEM_PROMPT,
        user_message: str = DIAGNOSTIC_USER_MESSAGE,
    ) -> DiagnosticCallResult:
        """Send a trivial prompt end to end and report latency and outcome."""
        result = await self.dispatch(
            system_prompt, user_message, temperature=0.0, operation="diagnostic"
        )
        classification = result.error_classification
        return DiagnosticCallResult(
            success=result.success,
            request_id=result.request_id,
            latency_ms=result.request_time_ms,
            response=result.content,
            error=result.error,
            category=classification.category if classification else None,
        )

    async def _run(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float,
        expect_json: bool,
        operation: str,
    ) -> AnalysisResult:
        request_id = _new_request_id()
        started = time.monotonic()
        try:
            result = await self._execute(
                request_id,
                started,
                system_prompt,
                user_message,
                temperature,
                expect_json,
            )
        except Exception as exc:
            logger.exception("Unexpected dispatch failure for %s", request_id)
            result = self._failure(
                request_id,
                started,
                ErrorCategory.UNKNOWN,
                "Unexpected gateway error: {}".format(exc),
                stage="internal",
            )
        self._finish(result, operation)
        return result

    def _finish(self, result: AnalysisResult, operation: str) -> None:
        """Record statistics and the telemetry line for a finished call."""
        classification = result.error_classification
        if result.success:
            self._statistics.record_success()
        else:
            self._statistics.record_error(classification.category)

        log_request(
            request_id=result.request_id,
            operation=operation,
            outcome=(
                "success"
                if result.success
                else "{}_failed".format(result.diagnostics.get("stage", "request"))
            ),
            model=self._config.model_id,
            category=classification.category.value if classification else None,
            request_time_ms=result.request_time_ms,
            usage=result.usage,
            provenance=result.document.provenance.value if result.document else None,
            error=result.error,
        )

    async def _execute(
        self,
        request_id: str,
        started: float,
        system_prompt: str,
        user_message: str,
        temperature: float,
        expect_json: bool,
    ) -> AnalysisResult:
        cfg = self._config

        # --- Request validation ---
        try:
            request = AnalysisRequest(
                id=request_id,
                system_prompt=system_prompt,
                user_message=user_message,
                temperature=temperature,
            )
        except ValidationError as exc:
            return self._failure(
                request_id,
                started,
                ErrorCategory.CLIENT,
                "Invalid analysis request: {}".format(exc.errors()[0]["msg"]),
                stage="request",
            )

        # --- Configuration preflight ---
        validation = self._validator.validate()
        if not validation.is_valid:
            return self._failure(
                request_id,
                started,
                ErrorCategory.CLIENT,
                "Gateway configuration is invalid: {}".format(
                    ", ".join(validation.codes)
                ),
                stage="config",
                diagnostics={"config": validation.to_dict()},
            )

        # --- Reachability preflight ---
        probe = await self._prober.probe()
        if not probe.success:
            category = (
                ErrorCategory(probe.category)
                if probe.category in _PROBE_CATEGORIES
                else ErrorCategory.NETWORK
            )
            return self._failure(
                request_id,
                started,
                category,
                "Provider host {} is unreachable".format(probe.hostname),
                stage="probe",
                diagnostics={"probe": probe.to_dict()},
            )

        # --- Payload ---
        payload = {
            "model": cfg.model_id,
            "max_tokens": cfg.max_tokens,
            "temperature": request.temperature,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_message}],
        }
        body = json.dumps(payload).encode("utf-8")
        if len(body) > cfg.max_body_bytes:
            return self._failure(
                request_id,
                started,
                ErrorCategory.CLIENT,
                "Request body of {} bytes exceeds limit of {}".format(
                    len(body), cfg.max_body_bytes
                ),
                stage="payload",
            )

        headers = {
            "x-api-key": cfg.credential,
            "anthropic-version": cfg.api_version,
            "content-type": "application/json",
        }

        # --- Provider call ---
        # httpx timeouts bound each read; the deadline bounds the whole call.
        try:
            status_code, raw = await asyncio.wait_for(
                self._post(body, headers), cfg.request_timeout
            )
        except ResponseTooLargeError as exc:
            return self._failure(
                request_id, started, ErrorCategory.UNKNOWN, exc.detail, stage="response"
            )
        except asyncio.TimeoutError:
            return self._failure(
                request_id,
                started,
                ErrorCategory.TIMEOUT,
                "Provider call exceeded the {}s deadline".format(cfg.request_timeout),
                stage="transport",
            )
        except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError) as exc:
            classification = classify(exc)
            return self._failure(
                request_id,
                started,
                classification.category,
                "Provider call failed: {}".format(str(exc) or exc.__class__.__name__),
                stage="transport",
                classification=classification,
            )

        try:
            data: Any = json.loads(raw)
        except ValueError:
            data = None

        if not 200 <= status_code < 300:
            message = "Provider returned HTTP {}".format(status_code)
            if isinstance(data, dict) and isinstance(data.get("error"), dict):
                detail = data["error"].get("message")
                if detail:
                    message = "{}: {}".format(message, detail)
            return self._failure(
                request_id,
                started,
                classify(status_code=status_code).category,
                message,
                stage="provider",
                diagnostics={"status_code": status_code},
            )

        # --- Reply structure ---
        warnings = validate_response_structure(data)
        for warning in warnings:
            logger.warning("Reply structure warning for %s: %s", request_id, warning)

        text = extract_text(data)
        if text is None:
            return self._failure(
                request_id,
                started,
                ErrorCategory.UNKNOWN,
                "Provider reply carried no text content",
                stage="response",
                diagnostics={"warnings": warnings},
            )

        document = recover(text, request.user_message) if expect_json else None

        return AnalysisResult(
            success=True,
            content=text,
            usage=data.get("usage") if isinstance(data.get("usage"), dict) else None,
            request_id=request_id,
            request_time_ms=(time.monotonic() - started) * 1000,
            document=document,
            diagnostics={"warnings": warnings} if warnings else {},
        )

    async def _post(self, body: bytes, headers: Dict[str, str]) -> Tuple[int, bytes]:
        """Stream the provider call and return its status and bounded body."""
        cfg = self._config
        async with httpx.AsyncClient(
            timeout=cfg.request_timeout, transport=self._transport
        ) as client:
            async with client.stream(
                "POST", cfg.endpoint_url, content=body, headers=headers
            ) as resp:
                return resp.status_code, await self._read_bounded(resp)

    async def _read_bounded(self, resp: httpx.Response) -> bytes:
        """Read a streamed body, aborting once it passes max_body_bytes."""
        limit = self._config.max_body_bytes
        declared = resp.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise ResponseTooLargeError(
                limit,
                "Provider reply of {} bytes exceeds limit of {}".format(declared, limit),
            )

        chunks: List[bytes] = []
        received = 0
        async for chunk in resp.aiter_bytes():
            received += len(chunk)
            if received > limit:
                raise ResponseTooLargeError(
                    limit, "Provider reply exceeds limit of {} bytes".format(limit)
                )
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _failure(
        request_id: str,
        started: float,
        category: ErrorCategory,
        error: str,
        stage: str,
        diagnostics: Optional[Dict[str, Any]] = None,
        classification: Optional[ErrorClassification] = None,
    ) -> AnalysisResult:
        details = dict(diagnostics or {})
        details["stage"] = stage
        return AnalysisResult(
            success=False,
            request_id=request_id,
            request_time_ms=(time.monotonic() - started) * 1000,
            error=error,
            error_classification=classification or classification_for(category),
            diagnostics=details,
        )

"""Tests for the error classifier."""

import asyncio
import socket

import httpx
import pytest

from analysis_gateway.classifier import classification_for, classify
from analysis_gateway.models import ErrorCategory, Severity


@pytest.mark.parametrize(
    "status, category, severity",
    [
        (401, ErrorCategory.AUTH, Severity.CRITICAL),
        (403, ErrorCategory.AUTH, Severity.CRITICAL),
        (429, ErrorCategory.RATE_LIMIT, Severity.MEDIUM),
        (500, ErrorCategory.SERVER, Severity.MEDIUM),
        (529, ErrorCategory.SERVER, Severity.MEDIUM),
        (400, ErrorCategory.CLIENT, Severity.LOW),
        (413, ErrorCategory.CLIENT, Severity.LOW),
        (302, ErrorCategory.UNKNOWN, Severity.MEDIUM),
    ],
)
def test_status_codes(status: int, category: ErrorCategory, severity: Severity) -> None:
    """Each status class maps to one category and severity."""
    result = classify(status_code=status)
    assert result.category == category
    assert result.severity == severity
    assert result.suggested_action


def test_status_code_wins_over_fault() -> None:
    """A status code proves the provider answered, so it takes precedence."""
    result = classify(httpx.ReadTimeout("slow"), status_code=401)
    assert result.category == ErrorCategory.AUTH


def test_timeout() -> None:
    assert classify(httpx.ReadTimeout("timed out")).category == ErrorCategory.TIMEOUT


def test_deadline_timeout() -> None:
    assert classify(asyncio.TimeoutError()).category == ErrorCategory.TIMEOUT


def test_dns_failure_found_in_cause_chain() -> None:
    """A resolver error wrapped by the transport is still recognised."""
    try:
        try:
            raise socket.gaierror(-3, "Temporary failure in name resolution")
        except socket.gaierror as inner:
            raise httpx.ConnectError("connect failed") from inner
    except httpx.ConnectError as exc:
        fault = exc

    assert classify(fault).category == ErrorCategory.DNS


def test_connection_refused_in_chain() -> None:
    try:
        try:
            raise ConnectionRefusedError(111, "refused")
        except ConnectionRefusedError as inner:
            raise httpx.ConnectError("connect failed") from inner
    except httpx.ConnectError as exc:
        fault = exc

    assert classify(fault).category == ErrorCategory.CONNECTION


def test_http_status_error_uses_response_status() -> None:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(503, request=request)
    fault = httpx.HTTPStatusError("unavailable", request=request, response=response)
    assert classify(fault).category == ErrorCategory.SERVER


def test_other_transport_error_is_network() -> None:
    assert classify(httpx.RemoteProtocolError("eof")).category == ErrorCategory.NETWORK


def test_unmatched_fault_is_unknown() -> None:
    assert classify(KeyError("content")).category == ErrorCategory.UNKNOWN
    assert classify().category == ErrorCategory.UNKNOWN


def test_classification_is_deterministic() -> None:
    """The same signal always yields an equal classification."""
    assert classify(status_code=429) == classify(status_code=429)


def test_caller_guidance() -> None:
    """High and critical faults block the caller; rate limits and 5xx retry."""
    assert classification_for(ErrorCategory.AUTH).blocks_caller
    assert classification_for(ErrorCategory.DNS).blocks_caller
    assert not classification_for(ErrorCategory.RATE_LIMIT).blocks_caller
    assert classification_for(ErrorCategory.RATE_LIMIT).retryable
    assert classification_for(ErrorCategory.SERVER).retryable
    assert not classification_for(ErrorCategory.CLIENT).retryable

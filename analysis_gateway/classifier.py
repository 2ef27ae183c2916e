"""Error classification for the advisory analysis gateway.

Maps any failure onto the closed ErrorCategory taxonomy with a severity and
a suggested remediation. Classification looks only at transport and status
signals, so it works even when the provider body is unparseable.
"""

import asyncio
import socket
from typing import Dict, Iterator, Optional, Tuple

import httpx

from analysis_gateway.models import ErrorCategory, ErrorClassification, Severity

_RULES: Dict[ErrorCategory, Tuple[Severity, str]] = {
    ErrorCategory.TIMEOUT: (
        Severity.HIGH,
        "Increase the request timeout or check network stability",
    ),
    ErrorCategory.DNS: (
        Severity.HIGH,
        "Check DNS resolution and network connectivity",
    ),
    ErrorCategory.CONNECTION: (
        Severity.HIGH,
        "Verify the provider endpoint is reachable from this host",
    ),
    ErrorCategory.AUTH: (
        Severity.CRITICAL,
        "Verify the provider credential and its permissions",
    ),
    ErrorCategory.RATE_LIMIT: (
        Severity.MEDIUM,
        "Back off and retry later",
    ),
    ErrorCategory.SERVER: (
        Severity.MEDIUM,
        "Retry later, the provider is failing",
    ),
    ErrorCategory.CLIENT: (
        Severity.LOW,
        "Inspect the request payload and parameters",
    ),
    ErrorCategory.NETWORK: (
        Severity.HIGH,
        "Check network connectivity and firewall settings",
    ),
    ErrorCategory.UNKNOWN: (
        Severity.MEDIUM,
        "Inspect the gateway logs",
    ),
}

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
)

_REFUSED_MARKERS = ("connection refused", "errno 111", "errno 61", "winerror 10061")


def classification_for(category: ErrorCategory) -> ErrorClassification:
    """Return the fixed classification for a category."""
    severity, action = _RULES[category]
    return ErrorClassification(
        category=category, severity=severity, suggested_action=action
    )


def _exception_chain(fault: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = fault
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _category_for_status(status_code: int) -> ErrorCategory:
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code >= 500:
        return ErrorCategory.SERVER
    if status_code >= 400:
        return ErrorCategory.CLIENT
    return ErrorCategory.UNKNOWN


def _category_for_fault(fault: BaseException) -> ErrorCategory:
    chain = list(_exception_chain(fault))
    text = " ".join(str(exc) for exc in chain).lower()

    if any(
        isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)) for exc in chain
    ):
        return ErrorCategory.TIMEOUT
    if any(isinstance(exc, socket.gaierror) for exc in chain) or any(
        marker in text for marker in _DNS_MARKERS
    ):
        return ErrorCategory.DNS
    if any(isinstance(exc, ConnectionRefusedError) for exc in chain) or any(
        marker in text for marker in _REFUSED_MARKERS
    ):
        return ErrorCategory.CONNECTION
    if isinstance(fault, httpx.HTTPStatusError):
        return _category_for_status(fault.response.status_code)
    if isinstance(fault, httpx.TransportError):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def classify(
    fault: Optional[BaseException] = None,
    status_code: Optional[int] = None,
) -> ErrorClassification:
    """Classify a failed call.

    Args:
        fault: The exception raised by the transport, if any.
        status_code: The HTTP status returned by the provider, if any.

    Returns:
        The ErrorClassification for the strongest available signal. A
        status code wins over the exception since it proves the provider
        answered.
    """
    if status_code is not None:
        category = _category_for_status(status_code)
    elif fault is not None:
        category = _category_for_fault(fault)
    else:
        category = ErrorCategory.UNKNOWN
    return classification_for(category)

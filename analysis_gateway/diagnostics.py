"""Preflight diagnostics: configuration validation and network probing.

Both checks run before every dispatch and on every health query. The
validator is pure and cheap. The prober sends one unauthenticated HEAD
request with a short timeout and never raises.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from analysis_gateway.classifier import classify
from analysis_gateway.config import MAX_PROBE_TIMEOUT, GatewayConfig
from analysis_gateway.telemetry import logger

MIN_CREDENTIAL_LENGTH = 50

_RECOMMENDATIONS = {
    "credential_missing": "Set the provider API key environment variable",
    "credential_prefix": "Verify the API key is complete and has the expected prefix",
    "credential_short": "Verify the API key was not truncated",
    "endpoint_missing": "Set provider.endpoint_url to the provider messages endpoint",
    "endpoint_host": "Point provider.endpoint_url at the provider's own domain",
    "model_missing": "Set provider.model to a valid model identifier",
}


@dataclass(frozen=True)
class ConfigIssue:
    """A single configuration problem."""

    code: str
    level: str  # "error" | "warning"
    message: str


@dataclass(frozen=True)
class ConfigValidation:
    """Result of validating the gateway configuration."""

    is_valid: bool
    issues: List[ConfigIssue] = field(default_factory=list)

    @property
    def codes(self) -> List[str]:
        return [issue.code for issue in self.issues]

    @property
    def recommendations(self) -> List[str]:
        """Operator actions for each issue, in issue order."""
        return [_RECOMMENDATIONS[issue.code] for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [asdict(issue) for issue in self.issues],
            "recommendations": self.recommendations,
        }


class ConfigValidator:
    """Checks that the provider configuration is complete and plausible."""

    def __init__(self, config: GatewayConfig) -> None:
        self._config = config

    @property
    def config(self) -> GatewayConfig:
        return self._config

    def validate(self) -> ConfigValidation:
        """Validate credential, endpoint and model settings.

        Never raises. Logs one warning per issue found.
        """
        cfg = self._config
        issues: List[ConfigIssue] = []

        if not cfg.credential:
            issues.append(
                ConfigIssue(
                    "credential_missing", "error", "Provider credential is missing"
                )
            )
        else:
            if not cfg.credential.startswith(cfg.credential_prefix):
                issues.append(
                    ConfigIssue(
                        "credential_prefix",
                        "error",
                        "Credential does not start with {}".format(
                            cfg.credential_prefix
                        ),
                    )
                )
            if len(cfg.credential) < MIN_CREDENTIAL_LENGTH:
                issues.append(
                    ConfigIssue(
                        "credential_short",
                        "warning",
                        "Credential is {} characters, expected at least {}".format(
                            len(cfg.credential), MIN_CREDENTIAL_LENGTH
                        ),
                    )
                )

        hostname = urlparse(cfg.endpoint_url).hostname if cfg.endpoint_url else None
        if not hostname:
            issues.append(
                ConfigIssue(
                    "endpoint_missing", "error", "Endpoint URL is missing or has no host"
                )
            )
        elif not (
            hostname == cfg.provider_domain
            or hostname.endswith("." + cfg.provider_domain)
        ):
            issues.append(
                ConfigIssue(
                    "endpoint_host",
                    "error",
                    "Endpoint host {} is not under {}".format(
                        hostname, cfg.provider_domain
                    ),
                )
            )

        if not cfg.model_id.strip():
            issues.append(ConfigIssue("model_missing", "error", "Model id is empty"))

        for issue in issues:
            logger.warning(
                "Configuration issue [%s/%s]: %s", issue.level, issue.code, issue.message
            )

        return ConfigValidation(
            is_valid=not any(issue.level == "error" for issue in issues),
            issues=issues,
        )


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a reachability probe."""

    success: bool
    hostname: Optional[str]
    status_code: Optional[int] = None
    error: Optional[str] = None
    category: Optional[str] = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class NetworkProber:
    """Lightweight reachability check against the provider host.

    Any HTTP status counts as reachable: the probe carries no credential, so
    a 401 or 405 still proves DNS, TCP and TLS all work.
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def probe(self) -> ProbeResult:
        """Send a HEAD request to the endpoint and report reachability."""
        url = self._config.endpoint_url
        hostname = urlparse(url).hostname if url else None
        timeout = min(self._config.probe_timeout, MAX_PROBE_TIMEOUT)
        started = time.monotonic()

        try:
            status_code = await asyncio.wait_for(self._head(url, timeout), timeout)
        except (
            asyncio.TimeoutError,
            httpx.HTTPError,
            httpx.InvalidURL,
            OSError,
            ValueError,
        ) as exc:
            classification = classify(exc)
            logger.warning(
                "Network probe to %s failed (%s): %s",
                hostname,
                classification.category.value,
                exc,
            )
            return ProbeResult(
                success=False,
                hostname=hostname,
                error=str(exc) or exc.__class__.__name__,
                category=classification.category.value,
                elapsed_ms=(time.monotonic() - started) * 1000,
            )

        return ProbeResult(
            success=True,
            hostname=hostname,
            status_code=status_code,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )

    async def _head(self, url: str, timeout: float) -> int:
        async with httpx.AsyncClient(
            timeout=timeout, transport=self._transport
        ) as client:
            resp = await client.head(url)
        return resp.status_code

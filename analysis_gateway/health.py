"""Health surface for the advisory analysis gateway.

Combines the live request counters with a fresh configuration check and a
fresh reachability probe. Nothing here is cached: every snapshot re-runs the
checks, so the report always reflects the current state.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from analysis_gateway.diagnostics import (
    ConfigValidation,
    ConfigValidator,
    NetworkProber,
    ProbeResult,
)
from analysis_gateway.stats import StatisticsAggregator, StatisticsSnapshot

STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"


def format_uptime(seconds: float) -> str:
    """Format a duration as "1h 2m 3s"."""
    total = int(max(seconds, 0))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return "{}h {}m {}s".format(hours, minutes, secs)


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time health report. Recomputed on demand, never stored."""

    status: str
    timestamp: str
    config: ConfigValidation
    probe: ProbeResult
    statistics: StatisticsSnapshot

    @property
    def uptime_seconds(self) -> float:
        return self.statistics.uptime_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "uptime": format_uptime(self.uptime_seconds),
            "config": self.config.to_dict(),
            "network": self.probe.to_dict(),
            "statistics": self.statistics.to_dict(),
        }


class _StatisticsCollector:
    """Exposes the aggregator and config state as Prometheus metrics."""

    def __init__(
        self, validator: ConfigValidator, statistics: StatisticsAggregator
    ) -> None:
        self._validator = validator
        self._statistics = statistics

    def collect(self) -> Iterator[Metric]:
        snap = self._statistics.snapshot()

        yield CounterMetricFamily(
            "gateway_requests",
            "Analysis requests dispatched",
            value=snap.total_requests,
        )
        yield CounterMetricFamily(
            "gateway_errors",
            "Analysis requests that failed",
            value=snap.total_errors,
        )

        by_category = CounterMetricFamily(
            "gateway_errors_by_category",
            "Failed analysis requests by error category",
            labels=["category"],
        )
        for category, count in snap.by_category.items():
            by_category.add_metric([category], count)
        yield by_category

        yield GaugeMetricFamily(
            "gateway_config_valid",
            "1 if the provider configuration passes validation",
            value=1 if self._validator.validate().is_valid else 0,
        )
        yield GaugeMetricFamily(
            "gateway_uptime_seconds",
            "Seconds since the statistics aggregator started",
            value=snap.uptime_seconds,
        )


class HealthMonitor:
    """Builds health snapshots and metrics from the gateway components."""

    def __init__(
        self,
        validator: ConfigValidator,
        prober: NetworkProber,
        statistics: StatisticsAggregator,
    ) -> None:
        self._validator = validator
        self._prober = prober
        self._statistics = statistics
        self._registry = CollectorRegistry()
        self._registry.register(_StatisticsCollector(validator, statistics))

    @property
    def validator(self) -> ConfigValidator:
        return self._validator

    @property
    def prober(self) -> NetworkProber:
        return self._prober

    async def snapshot(self) -> HealthSnapshot:
        """Validate config, probe the provider and copy the counters.

        Does not mutate any counter, so two snapshots with no dispatch in
        between report identical statistics.
        """
        validation = self._validator.validate()
        probe = await self._prober.probe()
        healthy = validation.is_valid and probe.success
        return HealthSnapshot(
            status=STATUS_HEALTHY if healthy else STATUS_UNHEALTHY,
            timestamp=datetime.now(timezone.utc).isoformat(),
            config=validation,
            probe=probe,
            statistics=self._statistics.snapshot(),
        )

    async def is_live(self) -> bool:
        """Return True if the gateway can currently serve analyses."""
        return (await self.snapshot()).status == STATUS_HEALTHY

    def render_metrics(self) -> str:
        """Render counters in the Prometheus text exposition format."""
        return generate_latest(self._registry).decode("utf-8")

"""
Metrics Recorders
=================

Counters, gauges and timers for the follow-up engine.

Recorders:
- LoggingMetricsRecorder: emits one structured log line per data point
- GrafanaMetricsRecorder: pushes OTLP JSON gauges to Grafana Cloud via httpx

Metric emission is best-effort: a recorder never raises into the caller.
"""

import asyncio
import base64
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Set

import httpx

from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

Tags = Optional[Dict[str, str]]


class IMetricsRecorder(ABC):
    """Sink for numeric observations."""

    @abstractmethod
    def track_metric(self, name: str, value: float, tags: Tags = None) -> None:
        """Record one data point."""

    def start_timer(self, name: str, tags: Tags = None) -> Callable[[], float]:
        """
        Start a timer.

        Returns:
            A stop callable recording and returning elapsed milliseconds
        """
        start = time.perf_counter()

        def stop() -> float:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.track_metric(name, round(elapsed_ms, 2), tags)
            return elapsed_ms

        return stop


class LoggingMetricsRecorder(IMetricsRecorder):
    """Writes each metric as a structured log record."""

    def track_metric(self, name: str, value: float, tags: Tags = None) -> None:
        logger.info(
            "metric",
            extra={"metric_name": name, "metric_value": value, "metric_tags": dict(tags or {})}
        )


class InMemoryMetricsRecorder(IMetricsRecorder):
    """Keeps every data point in memory. Used by tests and the debug endpoint."""

    def __init__(self):
        self.records: List[tuple] = []

    def track_metric(self, name: str, value: float, tags: Tags = None) -> None:
        self.records.append((name, value, dict(tags or {})))

    def values(self, name: str) -> List[float]:
        return [value for metric, value, _ in self.records if metric == name]

    def tags(self, name: str) -> List[Dict[str, str]]:
        return [tags for metric, _, tags in self.records if metric == name]


class GrafanaMetricsRecorder(IMetricsRecorder):
    """
    Export metrics to Grafana Cloud via the OTLP HTTP endpoint.

    Each data point is logged locally and, when credentials are configured,
    pushed as an OTLP gauge in a background task. Push failures are logged.
    """

    def __init__(
        self,
        host: Optional[str],
        api_key: Optional[str],
        instance_id: Optional[str],
        service_name: str = "followup-service",
        service_version: str = "1.0.0",
        environment: str = "development",
        fallback: Optional[IMetricsRecorder] = None
    ):
        self._enabled = bool(host and api_key and instance_id)
        self._service_name = service_name
        self._service_version = service_version
        self._environment = environment
        self._fallback = fallback or LoggingMetricsRecorder()
        self._pending: Set[asyncio.Task] = set()

        if self._enabled:
            auth_pair = f"{instance_id}:{api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            self._instance_id = instance_id
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in host:
                self._url = f"{host.rstrip('/')}/otlp/v1/metrics"
            else:
                self._url = host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": host, "instance_id": instance_id}
            )
        else:
            logger.warning(
                "Grafana OTLP exporter not configured - metrics will only be logged",
                extra={
                    "host_configured": bool(host),
                    "api_key_configured": bool(api_key),
                    "instance_id_configured": bool(instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(self, name: str, value: float, tags: Tags = None) -> dict:
        """Build an OTLP metrics payload holding a single gauge data point."""
        attributes = [
            {"key": "service", "value": {"stringValue": self._service_name}},
        ]
        for key, tag_value in (tags or {}).items():
            attributes.append({"key": key, "value": {"stringValue": str(tag_value)}})

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": self._service_name}},
                            {"key": "service.version", "value": {"stringValue": self._service_version}},
                            {"key": "deployment.environment", "value": {"stringValue": self._environment}},
                        ]
                    },
                    "scopeMetrics": [
                        {
                            "metrics": [
                                {
                                    "name": name.replace(".", "_"),
                                    "unit": "ms" if name.endswith(".duration") else "1",
                                    "gauge": {
                                        "dataPoints": [
                                            {
                                                "asDouble": float(value),
                                                "timeUnixNano": time.time_ns(),
                                                "attributes": attributes
                                            }
                                        ]
                                    }
                                }
                            ]
                        }
                    ]
                }
            ]
        }

    def track_metric(self, name: str, value: float, tags: Tags = None) -> None:
        self._fallback.track_metric(name, value, tags)
        if not self._enabled:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop - skipping Grafana export", extra={"metric_name": name})
            return

        task = loop.create_task(self.export(name, value, tags))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def export(self, name: str, value: float, tags: Tags = None) -> bool:
        """
        Push one data point to Grafana.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(
                    self._url,
                    headers=headers,
                    json=self.build_payload(name, value, tags)
                )
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metric to Grafana",
                extra={"metric_name": name, "error": str(e)}
            )
            return False

        if response.status_code in (200, 202):
            return True

        logger.warning(
            "Failed to export metric to Grafana",
            extra={
                "metric_name": name,
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False

    async def flush(self) -> None:
        """Wait for in-flight exports. Called on shutdown."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
